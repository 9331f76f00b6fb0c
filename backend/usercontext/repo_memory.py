"""
In-memory repositories for development and tests.

All repositories of one ``MemoryStore`` share its dictionaries. Reads return
copies so callers can never mutate stored rows by accident. Transactions
snapshot the store and restore it when the closure raises.
"""
from __future__ import annotations

import copy
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

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
from .ports import Repositories

T = TypeVar("T")

_TABLES = (
    "accounts",
    "persons",
    "staff",
    "teachers",
    "students",
    "profiles",
    "education_groups",
    "substitutions",
    "activity_groups",
    "active_groups",
    "supervisions",
    "visits",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    def __init__(self) -> None:
        self.accounts: Dict[int, Account] = {}
        self.persons: Dict[int, Person] = {}
        self.staff: Dict[int, Staff] = {}
        self.teachers: Dict[int, Teacher] = {}
        self.students: Dict[int, Student] = {}
        # profiles are keyed by account id (one profile per account)
        self.profiles: Dict[int, Profile] = {}
        self.education_groups: Dict[int, EducationGroup] = {}
        self.substitutions: Dict[int, Substitution] = {}
        self.activity_groups: Dict[int, ActivityGroup] = {}
        self.active_groups: Dict[int, ActiveGroup] = {}
        self.supervisions: Dict[int, Supervision] = {}
        self.visits: Dict[int, Visit] = {}
        self._seq: Dict[str, int] = {}

    def next_id(self, table: str) -> int:
        current = self._seq.get(table) or max((r.id or 0 for r in getattr(self, table).values()), default=0)
        self._seq[table] = current + 1
        return current + 1

    def snapshot(self) -> Dict[str, Any]:
        state = {name: copy.deepcopy(getattr(self, name)) for name in _TABLES}
        state["_seq"] = dict(self._seq)
        return state

    def restore(self, state: Dict[str, Any]) -> None:
        for name in _TABLES:
            setattr(self, name, state[name])
        self._seq = state["_seq"]

    # --- Seeding helpers -------------------------------------------------------
    def add(self, record: T) -> T:
        """Insert a record into the table matching its type."""
        table = _TABLE_BY_TYPE[type(record)]
        if isinstance(record, Profile):
            if record.id is None:
                record.id = self.next_id("profiles")
            self.profiles[record.account_id] = copy.deepcopy(record)
        else:
            getattr(self, table)[record.id] = copy.deepcopy(record)
        return record


_TABLE_BY_TYPE = {
    Account: "accounts",
    Person: "persons",
    Staff: "staff",
    Teacher: "teachers",
    Student: "students",
    Profile: "profiles",
    EducationGroup: "education_groups",
    Substitution: "substitutions",
    ActivityGroup: "activity_groups",
    ActiveGroup: "active_groups",
    Supervision: "supervisions",
    Visit: "visits",
}


class _MemoryRepo:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store


class MemoryAccountRepo(_MemoryRepo):
    def find_by_id(self, account_id: int) -> Optional[Account]:
        return copy.deepcopy(self._store.accounts.get(account_id))

    def update(self, account: Account) -> None:
        if account.id not in self._store.accounts:
            raise LookupError("account_not_found")
        self._store.accounts[account.id] = replace(account, updated_at=_now())


class MemoryPersonRepo(_MemoryRepo):
    def find_by_account_id(self, account_id: int) -> Optional[Person]:
        for person in self._store.persons.values():
            if person.account_id == account_id:
                return copy.deepcopy(person)
        return None

    def create(self, person: Person) -> Person:
        if person.account_id is not None and self.find_by_account_id(person.account_id) is not None:
            raise ValueError("account_already_linked")
        now = _now()
        created = replace(person, id=self._store.next_id("persons"), created_at=now, updated_at=now)
        self._store.persons[created.id] = created
        return copy.deepcopy(created)

    def update(self, person: Person) -> None:
        if person.id not in self._store.persons:
            raise LookupError("person_not_found")
        self._store.persons[person.id] = replace(person, updated_at=_now())


class MemoryStaffRepo(_MemoryRepo):
    def find_by_person_id(self, person_id: int) -> Optional[Staff]:
        for staff in self._store.staff.values():
            if staff.person_id == person_id:
                return copy.deepcopy(staff)
        return None


class MemoryTeacherRepo(_MemoryRepo):
    def find_by_staff_id(self, staff_id: int) -> Optional[Teacher]:
        for teacher in self._store.teachers.values():
            if teacher.staff_id == staff_id:
                return copy.deepcopy(teacher)
        return None


class MemoryStudentRepo(_MemoryRepo):
    def find_by_id(self, student_id: int) -> Optional[Student]:
        return copy.deepcopy(self._store.students.get(student_id))


class MemoryProfileRepo(_MemoryRepo):
    def find_by_account_id(self, account_id: int) -> Optional[Profile]:
        return copy.deepcopy(self._store.profiles.get(account_id))

    def create(self, profile: Profile) -> Profile:
        if profile.account_id in self._store.profiles:
            raise ValueError("profile_exists")
        created = replace(profile, id=self._store.next_id("profiles"))
        self._store.profiles[created.account_id] = created
        return copy.deepcopy(created)

    def update(self, profile: Profile) -> None:
        if profile.account_id not in self._store.profiles:
            raise LookupError("profile_not_found")
        self._store.profiles[profile.account_id] = copy.deepcopy(profile)


class MemoryEducationGroupRepo(_MemoryRepo):
    def find_by_teacher(self, teacher_id: int) -> List[EducationGroup]:
        return [copy.deepcopy(g) for g in self._store.education_groups.values() if teacher_id in g.teacher_ids]

    def find_by_id(self, group_id: int) -> Optional[EducationGroup]:
        return copy.deepcopy(self._store.education_groups.get(group_id))


class MemorySubstitutionRepo(_MemoryRepo):
    def find_active_by_substitute(self, staff_id: int, day: date) -> List[Substitution]:
        items: List[Substitution] = []
        for sub in self._store.substitutions.values():
            if sub.substitute_staff_id != staff_id or not sub.is_valid_on(day):
                continue
            group = self._store.education_groups.get(sub.group_id)
            items.append(replace(copy.deepcopy(sub), group=copy.deepcopy(group)))
        return items


class MemoryActivityGroupRepo(_MemoryRepo):
    def find_by_staff_supervisor(self, staff_id: int) -> List[ActivityGroup]:
        return [copy.deepcopy(g) for g in self._store.activity_groups.values() if staff_id in g.supervisor_staff_ids]


class MemoryActiveGroupRepo(_MemoryRepo):
    def find_by_id(self, group_id: int) -> Optional[ActiveGroup]:
        return copy.deepcopy(self._store.active_groups.get(group_id))

    def find_by_ids(self, group_ids: Sequence[int]) -> Dict[int, ActiveGroup]:
        return {gid: copy.deepcopy(self._store.active_groups[gid]) for gid in group_ids if gid in self._store.active_groups}

    def find_active_by_group_id(self, group_id: int) -> List[ActiveGroup]:
        return [copy.deepcopy(g) for g in self._store.active_groups.values() if g.group_id == group_id and g.is_active()]


class MemorySupervisionRepo(_MemoryRepo):
    def find_active_by_staff_id(self, staff_id: int) -> List[Supervision]:
        # No time filter here; the service decides against its own clock.
        return [copy.deepcopy(s) for s in self._store.supervisions.values() if s.staff_id == staff_id]


class MemoryVisitRepo(_MemoryRepo):
    def find_by_active_group_id(self, active_group_id: int) -> List[Visit]:
        return [copy.deepcopy(v) for v in self._store.visits.values() if v.active_group_id == active_group_id]


def memory_repositories(store: MemoryStore) -> Repositories:
    return Repositories(
        accounts=MemoryAccountRepo(store),
        persons=MemoryPersonRepo(store),
        staff=MemoryStaffRepo(store),
        teachers=MemoryTeacherRepo(store),
        students=MemoryStudentRepo(store),
        profiles=MemoryProfileRepo(store),
        education_groups=MemoryEducationGroupRepo(store),
        substitutions=MemorySubstitutionRepo(store),
        activity_groups=MemoryActivityGroupRepo(store),
        active_groups=MemoryActiveGroupRepo(store),
        supervisions=MemorySupervisionRepo(store),
        visits=MemoryVisitRepo(store),
    )


class MemoryTransactionRunner:
    """Snapshot/restore transactions over a ``MemoryStore``.

    ``repos_factory`` lets tests hand a customised bundle to the closure
    (e.g. a repository that fails on write).
    """

    def __init__(
        self,
        store: MemoryStore,
        repos_factory: Optional[Callable[[MemoryStore], Repositories]] = None,
    ) -> None:
        self._store = store
        self._repos_factory = repos_factory or memory_repositories
        self.commits = 0
        self.rollbacks = 0

    def run(self, fn: Callable[[Repositories], T]) -> T:
        snapshot = self._store.snapshot()
        try:
            result = fn(self._repos_factory(self._store))
        except BaseException:
            self._store.restore(snapshot)
            self.rollbacks += 1
            raise
        self.commits += 1
        return result


__all__ = [
    "MemoryStore",
    "MemoryTransactionRunner",
    "memory_repositories",
]
