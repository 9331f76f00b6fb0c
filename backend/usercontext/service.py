"""
User context service: the operations exposed to adapters.

Intent:
    Compose identity resolution, group aggregation, group access checks and
    profile management behind one object. The actor id is an explicit argument
    on every call; nothing is read from ambient request state.

Parameters:
    repos: repository bundle used for reads.
    tx: transaction runner handing a transaction-scoped bundle to writes.
    storage: avatar storage; uploads are written with ``put_object``, replaced
        files are removed with ``delete_object`` after commit.
    clock: UTC "now" provider used for substitution and supervision windows.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from backend.storage.avatars import AvatarStorageProtocol, NullAvatarStorage

from .access import AccessGuard
from .domain import Account, ActiveGroup, ActivityGroup, Person, Staff, Student, Teacher, Visit
from .groups import GroupAggregator, MyGroups, utc_now
from .identity import IdentityChain
from .ports import Repositories, TransactionRunner
from .profile import ProfileManager


class UserContextService:
    def __init__(
        self,
        repos: Repositories,
        tx: TransactionRunner,
        *,
        storage: Optional[AvatarStorageProtocol] = None,
        clock: Callable[[], datetime] = utc_now,
        avatar_url_prefix: Optional[str] = None,
    ) -> None:
        self.identity = IdentityChain(repos)
        self.groups = GroupAggregator(repos, self.identity, clock=clock)
        self.access = AccessGuard(repos, self.identity, self.groups)
        self.profiles = ProfileManager(
            repos,
            self.identity,
            tx,
            storage or NullAvatarStorage(),
            avatar_url_prefix=avatar_url_prefix,
        )

    # --- Identity --------------------------------------------------------------
    def get_current_user(self, actor_id: Optional[int]) -> Account:
        return self.identity.resolve_account(actor_id)

    def get_current_person(self, actor_id: Optional[int]) -> Person:
        return self.identity.current_person(actor_id)

    def get_current_staff(self, actor_id: Optional[int]) -> Staff:
        return self.identity.current_staff(actor_id)

    def get_current_teacher(self, actor_id: Optional[int]) -> Teacher:
        return self.identity.current_teacher(actor_id)

    # --- Groups ----------------------------------------------------------------
    def get_my_groups(self, actor_id: Optional[int]) -> MyGroups:
        return self.groups.my_groups(actor_id)

    def get_my_activity_groups(self, actor_id: Optional[int]) -> List[ActivityGroup]:
        return self.groups.my_activity_groups(actor_id)

    def get_my_active_groups(self, actor_id: Optional[int]) -> List[ActiveGroup]:
        return self.groups.my_active_groups(actor_id)

    def get_my_supervised_groups(self, actor_id: Optional[int]) -> List[ActiveGroup]:
        return self.groups.my_supervised_groups(actor_id)

    def get_substituted_group_ids(self, staff_id: int) -> Set[int]:
        return self.groups.substituted_group_ids(staff_id)

    # --- Group-scoped reads ----------------------------------------------------
    def get_group_students(self, actor_id: Optional[int], group_id: int) -> List[Student]:
        return self.access.group_students(actor_id, group_id)

    def get_group_visits(self, actor_id: Optional[int], group_id: int) -> List[Visit]:
        return self.access.group_visits(actor_id, group_id)

    # --- Profile ---------------------------------------------------------------
    def get_current_profile(self, actor_id: Optional[int]) -> Dict[str, Any]:
        return self.profiles.get_profile(actor_id)

    def update_current_profile(self, actor_id: Optional[int], updates: Mapping[str, Any]) -> Dict[str, Any]:
        return self.profiles.update_profile(actor_id, updates)

    def update_avatar(self, actor_id: Optional[int], avatar_ref: str) -> Dict[str, Any]:
        return self.profiles.update_avatar(actor_id, avatar_ref)

    def upload_avatar(self, actor_id: Optional[int], data: bytes) -> Dict[str, Any]:
        return self.profiles.upload_avatar(actor_id, data)

    def delete_avatar(self, actor_id: Optional[int]) -> Dict[str, Any]:
        return self.profiles.delete_avatar(actor_id)

    def avatar_key_for(self, actor_id: Optional[int], filename: str) -> str:
        return self.profiles.avatar_key_for(actor_id, filename)


__all__ = ["UserContextService"]
