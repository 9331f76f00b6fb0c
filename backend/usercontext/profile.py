"""
Profile reads and transactional profile/avatar writes for the current actor.

Behavior:
    - ``update_profile`` applies person, username and bio changes inside one
      transaction; any failure rolls back all of them.
    - ``update_avatar`` runs in two phases. The transaction swaps the avatar
      reference and returns the storage key of the replaced file (the cleanup
      token). Only after the transaction committed is that key deleted from
      storage. A failed deletion is logged; the database state is already
      correct and an orphaned file can be cleaned up later.
    - Only avatars under our own URL prefix that carry the account's "<id>_"
      file name prefix are ever deleted or served.
    - ``upload_avatar`` stores an uploaded image under a generated name and
      then runs ``update_avatar``; the new file is removed if that fails.
"""
from __future__ import annotations

import logging
import posixpath
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from backend.storage.avatars import AvatarStorageProtocol, sniff_image_extension
from backend.storage.config import (
    avatar_file_name,
    avatar_storage_key,
    get_avatar_max_upload_bytes,
    get_avatar_url_prefix,
)

from .domain import Account, Person, Profile
from .errors import (
    InvalidData,
    InvalidOperation,
    NotAuthorized,
    NotFound,
    UserContextError,
    is_not_linked,
)
from .identity import IdentityChain
from .ports import Repositories, TransactionRunner

logger = logging.getLogger(__name__)

OP_GET_PROFILE = "get current profile"
OP_UPDATE_PROFILE = "update current profile"
OP_UPDATE_AVATAR = "update avatar"
OP_DELETE_AVATAR = "delete avatar"
OP_UPLOAD_AVATAR = "upload avatar"
OP_AVATAR_FILE = "get avatar file"

PROFILE_UPDATE_FIELDS = ("first_name", "last_name", "username", "bio")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _clean_updates(updates: Mapping[str, Any]) -> Dict[str, str]:
    """Keep known fields; ``None`` means "not provided"."""
    clean: Dict[str, str] = {}
    for key in PROFILE_UPDATE_FIELDS:
        value = updates.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidData(f"{key} must be a string")
        clean[key] = value
    return clean


class ProfileManager:
    def __init__(
        self,
        repos: Repositories,
        identity: IdentityChain,
        tx: TransactionRunner,
        storage: AvatarStorageProtocol,
        *,
        avatar_url_prefix: Optional[str] = None,
    ) -> None:
        self._repos = repos
        self._identity = identity
        self._tx = tx
        self._storage = storage
        self._avatar_prefix = avatar_url_prefix or get_avatar_url_prefix()

    # --- Reads -----------------------------------------------------------------
    def get_profile(self, actor_id: Optional[int]) -> Dict[str, Any]:
        try:
            account = self._identity.resolve_account(actor_id)
            person = self._person_or_none(account)
            profile = self._repos.profiles.find_by_account_id(account.id)
        except Exception as exc:
            raise UserContextError(OP_GET_PROFILE, exc) from exc
        return self._build_profile(account, person, profile)

    def _person_or_none(self, account: Account) -> Optional[Person]:
        try:
            return self._identity.resolve_person(account.id)
        except UserContextError as exc:
            if is_not_linked(exc):
                return None
            raise

    @staticmethod
    def _build_profile(account: Account, person: Optional[Person], profile: Optional[Profile]) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "email": account.email,
            "username": account.username,
            "last_login": _iso(account.last_login),
        }
        if person is not None:
            response.update(
                id=person.id,
                first_name=person.first_name,
                last_name=person.last_name,
                created_at=_iso(person.created_at),
                updated_at=_iso(person.updated_at),
            )
            if person.tag_id is not None:
                response["rfid_card"] = person.tag_id
        else:
            response.update(
                id=account.id,
                first_name="",
                last_name="",
                created_at=_iso(account.created_at),
                updated_at=_iso(account.updated_at),
            )
        if profile is not None:
            for key in ("avatar", "bio", "settings"):
                value = getattr(profile, key)
                if value:
                    response[key] = value
        return response

    # --- Profile update --------------------------------------------------------
    def update_profile(self, actor_id: Optional[int], updates: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            account = self._identity.resolve_account(actor_id)
            fields = _clean_updates(updates)
            self._tx.run(lambda repos: self._apply_profile_updates(repos, account, fields))
        except Exception as exc:
            raise UserContextError(OP_UPDATE_PROFILE, exc) from exc
        return self.get_profile(actor_id)

    def _apply_profile_updates(self, repos: Repositories, account: Account, fields: Dict[str, str]) -> None:
        self._apply_person(repos, account, fields)
        self._apply_username(repos, account, fields)
        self._apply_bio(repos, account, fields)

    @staticmethod
    def _apply_person(repos: Repositories, account: Account, fields: Dict[str, str]) -> None:
        if "first_name" not in fields and "last_name" not in fields:
            return
        first_name = fields.get("first_name", "")
        last_name = fields.get("last_name", "")
        person = repos.persons.find_by_account_id(account.id)
        if person is None:
            if not first_name or not last_name:
                raise InvalidData("first name and last name are required to create profile")
            repos.persons.create(Person(id=0, account_id=account.id, first_name=first_name, last_name=last_name))
            return
        changes: Dict[str, str] = {}
        if first_name:
            changes["first_name"] = first_name
        if last_name:
            changes["last_name"] = last_name
        if changes:
            repos.persons.update(replace(person, **changes))

    @staticmethod
    def _apply_username(repos: Repositories, account: Account, fields: Dict[str, str]) -> None:
        if "username" not in fields:
            return
        current = repos.accounts.find_by_id(account.id)
        if current is None:
            raise NotFound()
        repos.accounts.update(replace(current, username=fields["username"] or None))

    @staticmethod
    def _apply_bio(repos: Repositories, account: Account, fields: Dict[str, str]) -> None:
        if "bio" not in fields:
            return
        profile = repos.profiles.find_by_account_id(account.id)
        if profile is None:
            repos.profiles.create(Profile(account_id=account.id, bio=fields["bio"]))
        else:
            repos.profiles.update(replace(profile, bio=fields["bio"]))

    # --- Avatar ----------------------------------------------------------------
    def update_avatar(self, actor_id: Optional[int], avatar_ref: str) -> Dict[str, Any]:
        """Point the actor's avatar at ``avatar_ref`` ("" removes it).

        References into our own storage must name one of the actor's files.
        """
        try:
            account = self._identity.resolve_account(actor_id)
            self._check_avatar_ref(account.id, avatar_ref)
            stale_key = self._tx.run(lambda repos: self._swap_avatar(repos, account.id, avatar_ref))
        except Exception as exc:
            raise UserContextError(OP_UPDATE_AVATAR, exc) from exc
        # Committed; the old file is no longer referenced.
        self._cleanup_avatar(stale_key)
        return self.get_profile(actor_id)

    def _check_avatar_ref(self, account_id: int, avatar_ref: str) -> None:
        if not avatar_ref.startswith(self._avatar_prefix):
            return
        if not avatar_storage_key(avatar_ref, prefix=self._avatar_prefix, account_id=account_id):
            raise NotAuthorized("avatar file belongs to another account")

    def _swap_avatar(self, repos: Repositories, account_id: int, avatar_ref: str) -> str:
        """Write the new reference and return the storage key of the old one.

        Only a replaced file owned by this account is handed back for cleanup.
        """
        profile = repos.profiles.find_by_account_id(account_id)
        if profile is None:
            repos.profiles.create(Profile(account_id=account_id, avatar=avatar_ref))
            return ""
        if profile.avatar == avatar_ref:
            return ""
        stale_key = avatar_storage_key(profile.avatar, prefix=self._avatar_prefix, account_id=account_id)
        repos.profiles.update(replace(profile, avatar=avatar_ref))
        return stale_key

    def upload_avatar(self, actor_id: Optional[int], data: bytes) -> Dict[str, Any]:
        """Store an uploaded JPEG/PNG/WebP image and make it the actor's avatar.

        The file name is generated here (``<account_id>_<random><ext>``). If the
        profile update fails, the freshly written file is removed again.
        """
        try:
            account = self._identity.resolve_account(actor_id)
            if not data:
                raise InvalidData("no file uploaded")
            if len(data) > get_avatar_max_upload_bytes():
                raise InvalidData("file too large")
            ext = sniff_image_extension(data)
            if not ext:
                raise InvalidData("invalid file type. Only JPEG, PNG, and WebP images are allowed")
            avatar_ref = self._avatar_prefix + avatar_file_name(account.id, ext)
            key = avatar_storage_key(avatar_ref, prefix=self._avatar_prefix, account_id=account.id)
            self._storage.put_object(key=key, data=data)
        except Exception as exc:
            raise UserContextError(OP_UPLOAD_AVATAR, exc) from exc
        logger.info("usercontext.avatar.stored account_id=%s key=%s size=%d", account.id, key, len(data))
        try:
            return self.update_avatar(actor_id, avatar_ref)
        except UserContextError:
            self._cleanup_avatar(key)
            raise

    def _cleanup_avatar(self, key: str) -> None:
        if not key:
            return
        try:
            self._storage.delete_object(key=key)
        except Exception as exc:
            logger.warning("usercontext.avatar.cleanup_failed key=%s reason=%s", key, exc.__class__.__name__)

    def delete_avatar(self, actor_id: Optional[int]) -> Dict[str, Any]:
        current = self.get_profile(actor_id)
        if not current.get("avatar"):
            raise UserContextError(OP_DELETE_AVATAR, InvalidOperation("no avatar to delete"))
        return self.update_avatar(actor_id, "")

    def avatar_key_for(self, actor_id: Optional[int], filename: str) -> str:
        """Storage key of the actor's own avatar file named ``filename``."""
        try:
            account = self._identity.resolve_account(actor_id)
            profile = self._repos.profiles.find_by_account_id(account.id)
        except Exception as exc:
            raise UserContextError(OP_AVATAR_FILE, exc) from exc
        avatar = profile.avatar if profile is not None else ""
        if not avatar:
            raise UserContextError(OP_AVATAR_FILE, NotFound("no avatar found"))
        if posixpath.basename(avatar) != filename:
            raise UserContextError(OP_AVATAR_FILE, NotAuthorized("access denied"))
        if not avatar.startswith(self._avatar_prefix):
            raise UserContextError(OP_AVATAR_FILE, NotFound("avatar is not stored locally"))
        key = avatar_storage_key(avatar, prefix=self._avatar_prefix, account_id=account.id)
        if not key:
            raise UserContextError(OP_AVATAR_FILE, NotAuthorized("access denied"))
        return key


__all__ = ["ProfileManager", "PROFILE_UPDATE_FIELDS"]
