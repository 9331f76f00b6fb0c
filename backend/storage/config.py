"""
Centralized storage configuration for profile avatars.

Intent:
    Provide a single source of truth for where avatar files live and which
    avatar references belong to our own storage. Prevents drift between the
    profile service (cleanup after commit) and the web adapter (file serving).

Behavior:
    - AVATAR_URL_PREFIX_DEFAULT ("/uploads/avatars/") marks references that
      point into our storage; anything else (external URLs) is never deleted.
    - AVATAR_STORAGE_ROOT_DEFAULT ("public") is the directory the storage keys
      are relative to.
    - avatar_storage_key() maps a reference to its storage key; with an
      account id only that account's own "<id>_" files qualify.
    - avatar_file_name() generates upload names; uploads are limited by
      get_avatar_max_upload_bytes() (5 MiB).

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
import secrets
from typing import Optional


AVATAR_URL_PREFIX_DEFAULT = "/uploads/avatars/"
AVATAR_STORAGE_ROOT_DEFAULT = "public"


def get_avatar_url_prefix() -> str:
    """Return the URL prefix of avatars stored by this service.

    Env:
        AVATAR_URL_PREFIX – optional override; always normalised to start and
        end with a slash.
    """
    raw = (os.getenv("AVATAR_URL_PREFIX") or AVATAR_URL_PREFIX_DEFAULT).strip()
    if not raw.startswith("/"):
        raw = "/" + raw
    if not raw.endswith("/"):
        raw = raw + "/"
    return raw


def get_avatar_storage_root() -> str:
    """Return the local directory avatar keys are resolved against.

    Env:
        AVATAR_STORAGE_ROOT – optional override; otherwise defaults to
        AVATAR_STORAGE_ROOT_DEFAULT.
    """
    return (os.getenv("AVATAR_STORAGE_ROOT") or AVATAR_STORAGE_ROOT_DEFAULT).strip()


def avatar_storage_key(avatar_ref: str, *, prefix: Optional[str] = None, account_id: Optional[int] = None) -> str:
    """Return the storage key for ``avatar_ref`` or "" when it is not ours.

    "/uploads/avatars/7_ab.png" -> "uploads/avatars/7_ab.png". References with
    path traversal segments are treated as foreign. With ``account_id`` the
    file name must also carry that account's ``<id>_`` prefix.
    """
    prefix = prefix or get_avatar_url_prefix()
    if not avatar_ref or not avatar_ref.startswith(prefix):
        return ""
    name = avatar_ref[len(prefix):]
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        return ""
    if account_id is not None and not name.startswith(f"{int(account_id)}_"):
        return ""
    return avatar_ref.lstrip("/")


def avatar_file_name(account_id: int, ext: str) -> str:
    """Server-generated avatar file name: ``<account_id>_<16 hex chars><ext>``."""
    return f"{int(account_id)}_{secrets.token_hex(8)}{ext}"


__all__ = [
    "AVATAR_URL_PREFIX_DEFAULT",
    "AVATAR_STORAGE_ROOT_DEFAULT",
    "get_avatar_url_prefix",
    "get_avatar_storage_root",
    "avatar_storage_key",
    "avatar_file_name",
]

# --- Size limits --------------------------------------------------------------

def _parse_int_env(name: str, default: int, *, contract_max: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return min(value, contract_max)


def get_avatar_max_upload_bytes() -> int:
    """Maximum avatar upload size (default/clamped 5 MiB).

    Env:
        AVATAR_MAX_UPLOAD_BYTES – optional lower limit; invalid values fall
        back to the default.
    """
    contract_max = 5 * 1024 * 1024
    return _parse_int_env("AVATAR_MAX_UPLOAD_BYTES", contract_max, contract_max=contract_max)


__all__ += ["get_avatar_max_upload_bytes"]
