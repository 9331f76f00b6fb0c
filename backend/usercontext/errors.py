"""
Error taxonomy for the user context service.

Three tiers:
- Sentinels: small exception classes compared by type (``NotAuthorized`` ...).
- ``UserContextError``: wraps any failure with the operation that produced it.
- ``PartialError``: counts and failed ids of a loop that kept going.

Callers match sentinels with ``is_error`` which follows the cause chain, so a
sentinel wrapped twice is still recognised.
"""
from __future__ import annotations

from typing import Any, List, Optional


class UserContextSentinel(Exception):
    """Base class for comparable user context conditions."""

    code = "user_context"
    message = "user context condition"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)


class NotFound(UserContextSentinel):
    code = "not_found"
    message = "user not found"


class NotAuthenticated(UserContextSentinel):
    code = "unauthenticated"
    message = "user not authenticated"


class NotAuthorized(UserContextSentinel):
    code = "forbidden"
    message = "user not authorized"


class NotLinked(UserContextSentinel):
    """Family of expected "actor has no such role" conditions."""

    code = "not_linked"


class NotLinkedToPerson(NotLinked):
    code = "not_linked_to_person"
    message = "user not linked to a person"


class NotLinkedToStaff(NotLinked):
    code = "not_linked_to_staff"
    message = "user not linked to a staff member"


class NotLinkedToTeacher(NotLinked):
    code = "not_linked_to_teacher"
    message = "user not linked to a teacher"


class NoActiveGroups(UserContextSentinel):
    code = "no_active_groups"
    message = "no active groups found"


class GroupNotFound(UserContextSentinel):
    code = "group_not_found"
    message = "group not found"


class InvalidOperation(UserContextSentinel):
    code = "invalid_operation"
    message = "invalid operation"


class InvalidData(UserContextSentinel):
    code = "invalid_data"
    message = "invalid data"


class UserContextError(Exception):
    """Failure of a public operation, carrying the operation name and cause."""

    def __init__(self, op: str, err: BaseException) -> None:
        super().__init__(op, err)
        self.op = op
        self.err = err
        self.__cause__ = err

    def __str__(self) -> str:
        return f"user context error during {self.op}: {self.err}"


class PartialError(Exception):
    """Some sub-operations of a loop failed while others produced data."""

    def __init__(
        self,
        op: str,
        *,
        success_count: int = 0,
        failure_count: int = 0,
        failed_ids: Optional[List[Any]] = None,
        last_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(op)
        self.op = op
        self.success_count = success_count
        self.failure_count = failure_count
        self.failed_ids: List[Any] = list(failed_ids or [])
        self.last_error = last_error
        if last_error is not None:
            self.__cause__ = last_error

    def record_success(self) -> None:
        self.success_count += 1

    def record_failure(self, item_id: Any, err: BaseException) -> None:
        if item_id is not None:
            self.failed_ids.append(item_id)
        self.failure_count += 1
        self.last_error = err
        self.__cause__ = err

    @property
    def ok(self) -> bool:
        return self.failure_count == 0

    def as_dict(self) -> dict:
        return {
            "operation": self.op,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "failed_ids": list(self.failed_ids),
            "last_error": str(self.last_error) if self.last_error is not None else None,
        }

    def __str__(self) -> str:
        return (
            f"partial failure during {self.op}: {self.success_count} succeeded, "
            f"{self.failure_count} failed (last error: {self.last_error})"
        )


def _cause_chain(exc: Optional[BaseException]):
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        nxt = getattr(exc, "err", None)
        if not isinstance(nxt, BaseException):
            nxt = exc.__cause__
        exc = nxt


def is_error(exc: Optional[BaseException], *kinds: type) -> bool:
    """Return True when ``exc`` or any exception it wraps is one of ``kinds``."""
    return any(isinstance(e, kinds) for e in _cause_chain(exc))


def find_error(exc: Optional[BaseException], kind: type) -> Optional[BaseException]:
    """Return the first exception of type ``kind`` along the cause chain."""
    for e in _cause_chain(exc):
        if isinstance(e, kind):
            return e
    return None


def is_not_linked(exc: Optional[BaseException]) -> bool:
    """Expected absence of a person/staff/teacher link (a cacheable negative)."""
    return is_error(exc, NotLinked)


__all__ = [
    "UserContextSentinel",
    "NotFound",
    "NotAuthenticated",
    "NotAuthorized",
    "NotLinked",
    "NotLinkedToPerson",
    "NotLinkedToStaff",
    "NotLinkedToTeacher",
    "NoActiveGroups",
    "GroupNotFound",
    "InvalidOperation",
    "InvalidData",
    "UserContextError",
    "PartialError",
    "is_error",
    "find_error",
    "is_not_linked",
]
