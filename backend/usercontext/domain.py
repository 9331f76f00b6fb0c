"""
User context records.

Plain dataclasses shared by repositories and the service. Repositories build
them from rows; the web adapter serialises them via ``to_public``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass
class Account:
    id: int
    email: str
    username: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Person:
    id: int
    first_name: str
    last_name: str
    account_id: Optional[int] = None
    tag_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Staff:
    id: int
    person_id: int


@dataclass
class Teacher:
    id: int
    staff_id: int


@dataclass
class Student:
    id: int
    person_id: int
    school_class: Optional[str] = None


@dataclass
class EducationGroup:
    id: int
    name: str
    room_id: Optional[int] = None
    teacher_ids: List[int] = field(default_factory=list)


@dataclass
class ActivityGroup:
    id: int
    name: str
    supervisor_staff_ids: List[int] = field(default_factory=list)


@dataclass
class ActiveGroup:
    id: int
    group_id: int
    room_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def is_active(self) -> bool:
        return self.end_time is None


@dataclass
class Supervision:
    id: int
    staff_id: int
    group_id: int
    start_date: datetime
    end_date: Optional[datetime] = None
    role: str = "supervisor"

    def is_active(self, now: datetime) -> bool:
        return self.end_date is None or self.end_date > now


@dataclass
class Substitution:
    id: int
    group_id: int
    substitute_staff_id: int
    valid_from: datetime
    valid_to: datetime
    regular_staff_id: Optional[int] = None
    group: Optional[EducationGroup] = None

    def is_valid_on(self, day: date) -> bool:
        """Half-open day window: ``valid_from <= day < valid_to``."""
        return self.valid_from.date() <= day < self.valid_to.date()


@dataclass
class Visit:
    id: int
    student_id: int
    active_group_id: int
    entry_time: datetime
    exit_time: Optional[datetime] = None

    def is_active(self) -> bool:
        return self.exit_time is None


@dataclass
class Profile:
    account_id: int
    id: Optional[int] = None
    avatar: str = ""
    bio: str = ""
    settings: str = "{}"


def to_public(record: Any) -> Dict[str, Any]:
    """Serialise a record to JSON-friendly primitives."""
    data = asdict(record)
    for key, value in list(data.items()):
        if isinstance(value, (datetime, date)):
            data[key] = value.isoformat()
    return data


__all__ = [
    "Account",
    "Person",
    "Staff",
    "Teacher",
    "Student",
    "EducationGroup",
    "ActivityGroup",
    "ActiveGroup",
    "Supervision",
    "Substitution",
    "Visit",
    "Profile",
    "to_public",
]
