"""
Identity chain: actor id -> Account -> Person -> Staff -> Teacher.

Every hop is a separate method so callers can stop early and reuse what an
earlier hop returned. A missing link raises the hop's ``NotLinkedTo*``
sentinel (wrapped with the operation name); repository failures are wrapped
as they are and never mapped onto a not-linked sentinel.
"""
from __future__ import annotations

from typing import Optional

from .domain import Account, Person, Staff, Teacher
from .errors import (
    NotAuthenticated,
    NotFound,
    NotLinkedToPerson,
    NotLinkedToStaff,
    NotLinkedToTeacher,
    UserContextError,
)
from .ports import Repositories

OP_ACTOR = "get user ID from context"
OP_CURRENT_USER = "get current user"
OP_CURRENT_PERSON = "get current person"
OP_CURRENT_STAFF = "get current staff"
OP_CURRENT_TEACHER = "get current teacher"


def require_actor(actor_id: Optional[int]) -> int:
    """Return the actor id or raise ``NotAuthenticated`` (wrapped)."""
    if actor_id is None:
        raise UserContextError(OP_ACTOR, NotAuthenticated())
    return int(actor_id)


class IdentityChain:
    def __init__(self, repos: Repositories) -> None:
        self._repos = repos

    # --- Single hops -----------------------------------------------------------
    def resolve_account(self, actor_id: Optional[int]) -> Account:
        account_id = require_actor(actor_id)
        try:
            account = self._repos.accounts.find_by_id(account_id)
        except Exception as exc:
            raise UserContextError(OP_CURRENT_USER, exc) from exc
        if account is None:
            raise UserContextError(OP_CURRENT_USER, NotFound())
        return account

    def resolve_person(self, account_id: int) -> Person:
        try:
            person = self._repos.persons.find_by_account_id(account_id)
        except Exception as exc:
            raise UserContextError(OP_CURRENT_PERSON, exc) from exc
        if person is None:
            raise UserContextError(OP_CURRENT_PERSON, NotLinkedToPerson())
        return person

    def resolve_staff(self, person: Person) -> Staff:
        try:
            staff = self._repos.staff.find_by_person_id(person.id)
        except Exception as exc:
            raise UserContextError(OP_CURRENT_STAFF, exc) from exc
        if staff is None:
            raise UserContextError(OP_CURRENT_STAFF, NotLinkedToStaff())
        return staff

    def resolve_teacher(self, staff: Staff) -> Teacher:
        try:
            teacher = self._repos.teachers.find_by_staff_id(staff.id)
        except Exception as exc:
            raise UserContextError(OP_CURRENT_TEACHER, exc) from exc
        if teacher is None:
            raise UserContextError(OP_CURRENT_TEACHER, NotLinkedToTeacher())
        return teacher

    # --- Chains ----------------------------------------------------------------
    def current_person(self, actor_id: Optional[int]) -> Person:
        """Person of the actor; the account row itself is not loaded."""
        return self.resolve_person(require_actor(actor_id))

    def current_staff(self, actor_id: Optional[int]) -> Staff:
        return self.resolve_staff(self.current_person(actor_id))

    def current_teacher(self, actor_id: Optional[int]) -> Teacher:
        return self.resolve_teacher(self.current_staff(actor_id))


__all__ = [
    "IdentityChain",
    "require_actor",
    "OP_CURRENT_USER",
    "OP_CURRENT_PERSON",
    "OP_CURRENT_STAFF",
    "OP_CURRENT_TEACHER",
]
