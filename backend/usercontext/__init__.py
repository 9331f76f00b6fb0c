"""User context: who the actor is and which groups it may act on.

Re-export the service and error taxonomy for convenient imports in adapters and tests.
"""

from .errors import (
    GroupNotFound,
    InvalidData,
    InvalidOperation,
    NoActiveGroups,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    NotLinkedToPerson,
    NotLinkedToStaff,
    NotLinkedToTeacher,
    PartialError,
    UserContextError,
    is_error,
)
from .service import UserContextService

__all__ = [
    "UserContextService",
    "UserContextError",
    "PartialError",
    "NotFound",
    "NotAuthenticated",
    "NotAuthorized",
    "NotLinkedToPerson",
    "NotLinkedToStaff",
    "NotLinkedToTeacher",
    "NoActiveGroups",
    "GroupNotFound",
    "InvalidOperation",
    "InvalidData",
    "is_error",
]
