"""Storage adapters for profile avatars."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol


class AvatarStorageProtocol(Protocol):
    """Protocol describing the storage adapter used for avatar files."""

    def put_object(self, *, key: str, data: bytes) -> None: ...

    def delete_object(self, *, key: str) -> None: ...


class NullAvatarStorage:
    """Fallback adapter that signals the storage backend is not configured."""

    def put_object(self, *, key: str, data: bytes) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def delete_object(self, *, key: str) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")


def sniff_image_extension(data: bytes) -> str:
    """Return ".jpg", ".png" or ".webp" from the file's magic bytes, else ""."""
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ".webp"
    return ""


class LocalAvatarStorage:
    """Avatar files below a local root directory.

    Keys are relative paths (``uploads/avatars/<file>``). Keys resolving
    outside the root are rejected with ``ValueError``. Deleting a missing
    file is a no-op.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve_path(self, key: str) -> Path:
        candidate = (self._root / key.lstrip("/")).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise ValueError("invalid_storage_key")
        return candidate

    def put_object(self, *, key: str, data: bytes) -> None:
        path = self.resolve_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write beside the target and rename so readers never see a partial file.
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def delete_object(self, *, key: str) -> None:
        path = self.resolve_path(key)
        path.unlink(missing_ok=True)


__all__ = ["AvatarStorageProtocol", "NullAvatarStorage", "LocalAvatarStorage", "sniff_image_extension"]
