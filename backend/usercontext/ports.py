"""
Repository ports consumed by the user context service.

Each protocol is small so tests can substitute a single repository. Lookups
return ``None`` for absent rows; any raised exception is treated as an
operational failure by the service.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from .domain import (
    Account,
    ActiveGroup,
    ActivityGroup,
    EducationGroup,
    Person,
    Profile,
    Staff,
    Student,
    Substitution,
    Supervision,
    Teacher,
    Visit,
)

T = TypeVar("T")


class AccountRepoProtocol(Protocol):
    def find_by_id(self, account_id: int) -> Optional[Account]: ...

    def update(self, account: Account) -> None: ...


class PersonRepoProtocol(Protocol):
    def find_by_account_id(self, account_id: int) -> Optional[Person]: ...

    def create(self, person: Person) -> Person: ...

    def update(self, person: Person) -> None: ...


class StaffRepoProtocol(Protocol):
    def find_by_person_id(self, person_id: int) -> Optional[Staff]: ...


class TeacherRepoProtocol(Protocol):
    def find_by_staff_id(self, staff_id: int) -> Optional[Teacher]: ...


class StudentRepoProtocol(Protocol):
    def find_by_id(self, student_id: int) -> Optional[Student]: ...


class ProfileRepoProtocol(Protocol):
    def find_by_account_id(self, account_id: int) -> Optional[Profile]: ...

    def create(self, profile: Profile) -> Profile: ...

    def update(self, profile: Profile) -> None: ...


class EducationGroupRepoProtocol(Protocol):
    def find_by_teacher(self, teacher_id: int) -> List[EducationGroup]: ...

    def find_by_id(self, group_id: int) -> Optional[EducationGroup]: ...


class SubstitutionRepoProtocol(Protocol):
    def find_active_by_substitute(self, staff_id: int, day: date) -> List[Substitution]:
        """Active substitutions on ``day``; ``group`` is prefetched where possible."""
        ...


class ActivityGroupRepoProtocol(Protocol):
    def find_by_staff_supervisor(self, staff_id: int) -> List[ActivityGroup]: ...


class ActiveGroupRepoProtocol(Protocol):
    def find_by_id(self, group_id: int) -> Optional[ActiveGroup]: ...

    def find_by_ids(self, group_ids: Sequence[int]) -> Dict[int, ActiveGroup]: ...

    def find_active_by_group_id(self, group_id: int) -> List[ActiveGroup]: ...


class SupervisionRepoProtocol(Protocol):
    def find_active_by_staff_id(self, staff_id: int) -> List[Supervision]: ...


class VisitRepoProtocol(Protocol):
    def find_by_active_group_id(self, active_group_id: int) -> List[Visit]: ...


@dataclass(frozen=True)
class Repositories:
    """All repositories of one scope (plain or transaction-bound)."""

    accounts: AccountRepoProtocol
    persons: PersonRepoProtocol
    staff: StaffRepoProtocol
    teachers: TeacherRepoProtocol
    students: StudentRepoProtocol
    profiles: ProfileRepoProtocol
    education_groups: EducationGroupRepoProtocol
    substitutions: SubstitutionRepoProtocol
    activity_groups: ActivityGroupRepoProtocol
    active_groups: ActiveGroupRepoProtocol
    supervisions: SupervisionRepoProtocol
    visits: VisitRepoProtocol


class TransactionRunner(Protocol):
    """Run ``fn`` atomically with a transaction-scoped repository bundle.

    The transaction commits when ``fn`` returns and rolls back when it raises;
    the exception propagates unchanged.
    """

    def run(self, fn: Callable[[Repositories], T]) -> T: ...


__all__ = [
    "AccountRepoProtocol",
    "PersonRepoProtocol",
    "StaffRepoProtocol",
    "TeacherRepoProtocol",
    "StudentRepoProtocol",
    "ProfileRepoProtocol",
    "EducationGroupRepoProtocol",
    "SubstitutionRepoProtocol",
    "ActivityGroupRepoProtocol",
    "ActiveGroupRepoProtocol",
    "SupervisionRepoProtocol",
    "VisitRepoProtocol",
    "Repositories",
    "TransactionRunner",
]
