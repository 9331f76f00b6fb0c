"""
Avatar storage: key derivation from avatar references and the local adapter.
"""
from __future__ import annotations

import re

import pytest

from backend.storage.avatars import LocalAvatarStorage, NullAvatarStorage, sniff_image_extension
from backend.storage.config import (
    avatar_file_name,
    avatar_storage_key,
    get_avatar_max_upload_bytes,
    get_avatar_storage_root,
    get_avatar_url_prefix,
)
from backend.tests.utils.storage_fixtures import JPEG_HEADER, PNG_BYTES, WEBP_HEADER, write_avatar_file


@pytest.mark.parametrize(
    "ref, key",
    [
        ("/uploads/avatars/7_ab.png", "uploads/avatars/7_ab.png"),
        ("https://cdn.example.org/uploads/avatars/7.png", ""),
        ("/uploads/avatars/../secrets.txt", ""),
        ("/uploads/avatars/", ""),
        ("", ""),
    ],
)
def test_avatar_storage_key(ref, key):
    assert avatar_storage_key(ref) == key


def test_url_prefix_is_normalised(monkeypatch):
    monkeypatch.setenv("AVATAR_URL_PREFIX", "media/avatars")
    assert get_avatar_url_prefix() == "/media/avatars/"
    assert avatar_storage_key("/media/avatars/a.png") == "media/avatars/a.png"
    assert avatar_storage_key("/uploads/avatars/a.png") == ""


def test_storage_root_default_and_override(monkeypatch):
    assert get_avatar_storage_root() == "public"
    monkeypatch.setenv("AVATAR_STORAGE_ROOT", "/srv/files")
    assert get_avatar_storage_root() == "/srv/files"


def test_local_storage_deletes_file(tmp_path):
    path = write_avatar_file(tmp_path, "1_old.png")
    storage = LocalAvatarStorage(tmp_path)
    storage.delete_object(key="uploads/avatars/1_old.png")
    assert not path.exists()


def test_local_storage_delete_of_missing_file_is_a_no_op(tmp_path):
    storage = LocalAvatarStorage(tmp_path)
    storage.delete_object(key="uploads/avatars/none.png")
    storage.delete_object(key="uploads/avatars/none.png")


def test_local_storage_put_object_creates_directories(tmp_path):
    storage = LocalAvatarStorage(tmp_path / "public")
    storage.put_object(key="uploads/avatars/1_ab.png", data=PNG_BYTES)
    path = tmp_path / "public" / "uploads" / "avatars" / "1_ab.png"
    assert path.read_bytes() == PNG_BYTES
    assert not path.with_name("1_ab.png.part").exists()
    storage.put_object(key="uploads/avatars/1_ab.png", data=b"\xff\xd8\xff")
    assert path.read_bytes() == b"\xff\xd8\xff"


def test_local_storage_put_object_rejects_keys_outside_root(tmp_path):
    with pytest.raises(ValueError):
        LocalAvatarStorage(tmp_path / "public").put_object(key="../escape.png", data=PNG_BYTES)
    assert not (tmp_path / "escape.png").exists()


@pytest.mark.parametrize(
    "data, ext",
    [
        (PNG_BYTES, ".png"),
        (JPEG_HEADER, ".jpg"),
        (WEBP_HEADER, ".webp"),
        (b"RIFF\x24\x00\x00\x00WAVEfmt ", ""),
        (b"GIF89a", ""),
        (b"", ""),
    ],
)
def test_sniff_image_extension(data, ext):
    assert sniff_image_extension(data) == ext


def test_avatar_storage_key_with_account_requires_own_prefix():
    assert avatar_storage_key("/uploads/avatars/7_ab.png", account_id=7) == "uploads/avatars/7_ab.png"
    assert avatar_storage_key("/uploads/avatars/7_ab.png", account_id=1) == ""
    assert avatar_storage_key("/uploads/avatars/77_ab.png", account_id=7) == ""
    assert avatar_storage_key("/uploads/avatars/7.png", account_id=7) == ""


def test_avatar_file_name_is_random_and_owned():
    first = avatar_file_name(7, ".png")
    second = avatar_file_name(7, ".png")
    assert re.fullmatch(r"7_[0-9a-f]{16}\.png", first)
    assert first != second


def test_max_upload_bytes_default_override_and_clamp(monkeypatch):
    assert get_avatar_max_upload_bytes() == 5 * 1024 * 1024
    monkeypatch.setenv("AVATAR_MAX_UPLOAD_BYTES", "1024")
    assert get_avatar_max_upload_bytes() == 1024
    monkeypatch.setenv("AVATAR_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024))
    assert get_avatar_max_upload_bytes() == 5 * 1024 * 1024
    monkeypatch.setenv("AVATAR_MAX_UPLOAD_BYTES", "lots")
    assert get_avatar_max_upload_bytes() == 5 * 1024 * 1024


def test_local_storage_rejects_keys_outside_root(tmp_path):
    with pytest.raises(ValueError):
        LocalAvatarStorage(tmp_path / "public").resolve_path("../outside.png")


def test_null_storage_signals_missing_configuration():
    with pytest.raises(RuntimeError, match="storage_adapter_not_configured"):
        NullAvatarStorage().delete_object(key="uploads/avatars/a.png")
    with pytest.raises(RuntimeError, match="storage_adapter_not_configured"):
        NullAvatarStorage().put_object(key="uploads/avatars/a.png", data=PNG_BYTES)
