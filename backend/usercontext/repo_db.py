"""
Postgres-backed repositories for the user context service.

Design:
- psycopg3 only, no ORM. Rows are mapped onto the dataclasses in ``domain``.
- A ``DBSession`` either opens a short-lived connection per call (reads) or
  wraps one live connection (inside ``DBTransactionRunner.run``), so every
  write of one unit of work shares the same transaction.
- Timestamps are fetched as ``timestamptz`` and returned as aware datetimes.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time, timezone
import os
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

import psycopg

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


def _dsn() -> str:
    """Resolve the DSN for user context access."""
    candidates = [
        os.getenv("USERCONTEXT_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for user context repositories")


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise TypeError(f"unexpected temporal value: {value!r}")


class DBSession:
    """Cursor provider bound to a DSN or to one open connection."""

    def __init__(self, dsn: Optional[str] = None, *, conn: Any = None) -> None:
        self._conn = conn
        self._dsn = None if conn is not None else (dsn or _dsn())

    @contextmanager
    def cursor(self) -> Iterator[Any]:
        if self._conn is not None:
            with self._conn.cursor() as cur:
                yield cur
            return
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                yield cur

    def fetchone(self, sql: str, params: Sequence[Any]) -> Optional[Tuple]:
        with self.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def fetchall(self, sql: str, params: Sequence[Any]) -> List[Tuple]:
        with self.cursor() as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def execute(self, sql: str, params: Sequence[Any]) -> int:
        with self.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount


class _DBRepo:
    def __init__(self, session: DBSession) -> None:
        self._db = session


# --- Accounts and persons ----------------------------------------------------

_ACCOUNT_COLUMNS = "id, email, username, last_login, created_at, updated_at"


def _account(row: Tuple) -> Account:
    return Account(
        id=int(row[0]),
        email=row[1],
        username=row[2],
        last_login=_as_datetime(row[3]),
        created_at=_as_datetime(row[4]),
        updated_at=_as_datetime(row[5]),
    )


class DBAccountRepo(_DBRepo):
    def find_by_id(self, account_id: int) -> Optional[Account]:
        row = self._db.fetchone(f"select {_ACCOUNT_COLUMNS} from auth.accounts where id = %s", (account_id,))
        return _account(row) if row else None

    def update(self, account: Account) -> None:
        count = self._db.execute(
            "update auth.accounts set username = %s, updated_at = now() where id = %s",
            (account.username, account.id),
        )
        if count == 0:
            raise LookupError("account_not_found")


_PERSON_COLUMNS = "id, first_name, last_name, account_id, tag_id, created_at, updated_at"


def _person(row: Tuple) -> Person:
    return Person(
        id=int(row[0]),
        first_name=row[1],
        last_name=row[2],
        account_id=int(row[3]) if row[3] is not None else None,
        tag_id=row[4],
        created_at=_as_datetime(row[5]),
        updated_at=_as_datetime(row[6]),
    )


class DBPersonRepo(_DBRepo):
    def find_by_account_id(self, account_id: int) -> Optional[Person]:
        row = self._db.fetchone(f"select {_PERSON_COLUMNS} from users.persons where account_id = %s", (account_id,))
        return _person(row) if row else None

    def create(self, person: Person) -> Person:
        row = self._db.fetchone(
            "insert into users.persons (first_name, last_name, account_id, tag_id) "
            f"values (%s, %s, %s, %s) returning {_PERSON_COLUMNS}",
            (person.first_name, person.last_name, person.account_id, person.tag_id),
        )
        if not row:
            raise RuntimeError("person_insert_failed")
        return _person(row)

    def update(self, person: Person) -> None:
        count = self._db.execute(
            "update users.persons set first_name = %s, last_name = %s, updated_at = now() where id = %s",
            (person.first_name, person.last_name, person.id),
        )
        if count == 0:
            raise LookupError("person_not_found")


class DBStaffRepo(_DBRepo):
    def find_by_person_id(self, person_id: int) -> Optional[Staff]:
        row = self._db.fetchone("select id, person_id from users.staff where person_id = %s", (person_id,))
        return Staff(id=int(row[0]), person_id=int(row[1])) if row else None


class DBTeacherRepo(_DBRepo):
    def find_by_staff_id(self, staff_id: int) -> Optional[Teacher]:
        row = self._db.fetchone("select id, staff_id from users.teachers where staff_id = %s", (staff_id,))
        return Teacher(id=int(row[0]), staff_id=int(row[1])) if row else None


class DBStudentRepo(_DBRepo):
    def find_by_id(self, student_id: int) -> Optional[Student]:
        row = self._db.fetchone("select id, person_id, school_class from users.students where id = %s", (student_id,))
        return Student(id=int(row[0]), person_id=int(row[1]), school_class=row[2]) if row else None


_PROFILE_COLUMNS = "id, account_id, coalesce(avatar, ''), coalesce(bio, ''), coalesce(settings::text, '{}')"


def _profile(row: Tuple) -> Profile:
    return Profile(id=int(row[0]), account_id=int(row[1]), avatar=row[2], bio=row[3], settings=row[4])


class DBProfileRepo(_DBRepo):
    def find_by_account_id(self, account_id: int) -> Optional[Profile]:
        row = self._db.fetchone(f"select {_PROFILE_COLUMNS} from users.profiles where account_id = %s", (account_id,))
        return _profile(row) if row else None

    def create(self, profile: Profile) -> Profile:
        row = self._db.fetchone(
            "insert into users.profiles (account_id, avatar, bio, settings) "
            f"values (%s, nullif(%s, ''), nullif(%s, ''), %s::jsonb) returning {_PROFILE_COLUMNS}",
            (profile.account_id, profile.avatar, profile.bio, profile.settings or "{}"),
        )
        if not row:
            raise RuntimeError("profile_insert_failed")
        return _profile(row)

    def update(self, profile: Profile) -> None:
        count = self._db.execute(
            "update users.profiles set avatar = nullif(%s, ''), bio = nullif(%s, ''), settings = %s::jsonb, "
            "updated_at = now() where account_id = %s",
            (profile.avatar, profile.bio, profile.settings or "{}", profile.account_id),
        )
        if count == 0:
            raise LookupError("profile_not_found")


# --- Groups ------------------------------------------------------------------

_EDUCATION_GROUP_COLUMNS = """
    g.id,
    g.name,
    g.room_id,
    array(select gt.teacher_id from education.group_teacher gt where gt.group_id = g.id order by gt.teacher_id)
"""


def _education_group(row: Tuple) -> EducationGroup:
    return EducationGroup(
        id=int(row[0]),
        name=row[1],
        room_id=int(row[2]) if row[2] is not None else None,
        teacher_ids=[int(t) for t in (row[3] or [])],
    )


class DBEducationGroupRepo(_DBRepo):
    def find_by_teacher(self, teacher_id: int) -> List[EducationGroup]:
        rows = self._db.fetchall(
            f"select {_EDUCATION_GROUP_COLUMNS} from education.groups g "
            "join education.group_teacher t on t.group_id = g.id "
            "where t.teacher_id = %s order by g.id",
            (teacher_id,),
        )
        return [_education_group(r) for r in rows]

    def find_by_id(self, group_id: int) -> Optional[EducationGroup]:
        row = self._db.fetchone(f"select {_EDUCATION_GROUP_COLUMNS} from education.groups g where g.id = %s", (group_id,))
        return _education_group(row) if row else None


class DBSubstitutionRepo(_DBRepo):
    def find_active_by_substitute(self, staff_id: int, day: date) -> List[Substitution]:
        # Group is loaded alongside so the service does not need a second query.
        rows = self._db.fetchall(
            "select s.id, s.group_id, s.substitute_staff_id, s.start_date, s.end_date, s.regular_staff_id, "
            f"{_EDUCATION_GROUP_COLUMNS} "
            "from education.group_substitution s "
            "left join education.groups g on g.id = s.group_id "
            "where s.substitute_staff_id = %s and s.start_date <= %s and s.end_date > %s "
            "order by s.id",
            (staff_id, day, day),
        )
        items: List[Substitution] = []
        for row in rows:
            group = _education_group(row[6:]) if row[6] is not None else None
            items.append(
                Substitution(
                    id=int(row[0]),
                    group_id=int(row[1]),
                    substitute_staff_id=int(row[2]),
                    valid_from=_as_datetime(row[3]),
                    valid_to=_as_datetime(row[4]),
                    regular_staff_id=int(row[5]) if row[5] is not None else None,
                    group=group,
                )
            )
        return items


class DBActivityGroupRepo(_DBRepo):
    def find_by_staff_supervisor(self, staff_id: int) -> List[ActivityGroup]:
        rows = self._db.fetchall(
            "select g.id, g.name, "
            "array(select s2.staff_id from activities.supervisors s2 where s2.group_id = g.id order by s2.staff_id) "
            "from activities.groups g "
            "join activities.supervisors s on s.group_id = g.id "
            "where s.staff_id = %s order by g.id",
            (staff_id,),
        )
        return [ActivityGroup(id=int(r[0]), name=r[1], supervisor_staff_ids=[int(x) for x in (r[2] or [])]) for r in rows]


_ACTIVE_GROUP_COLUMNS = "id, group_id, room_id, start_time, end_time"


def _active_group(row: Tuple) -> ActiveGroup:
    return ActiveGroup(
        id=int(row[0]),
        group_id=int(row[1]),
        room_id=int(row[2]) if row[2] is not None else None,
        start_time=_as_datetime(row[3]),
        end_time=_as_datetime(row[4]),
    )


class DBActiveGroupRepo(_DBRepo):
    def find_by_id(self, group_id: int) -> Optional[ActiveGroup]:
        row = self._db.fetchone(f"select {_ACTIVE_GROUP_COLUMNS} from active.groups where id = %s", (group_id,))
        return _active_group(row) if row else None

    def find_by_ids(self, group_ids: Sequence[int]) -> Dict[int, ActiveGroup]:
        if not group_ids:
            return {}
        rows = self._db.fetchall(
            f"select {_ACTIVE_GROUP_COLUMNS} from active.groups where id = any(%s)",
            (list(group_ids),),
        )
        groups = [_active_group(r) for r in rows]
        return {g.id: g for g in groups}

    def find_active_by_group_id(self, group_id: int) -> List[ActiveGroup]:
        rows = self._db.fetchall(
            f"select {_ACTIVE_GROUP_COLUMNS} from active.groups "
            "where group_id = %s and end_time is null order by start_time, id",
            (group_id,),
        )
        return [_active_group(r) for r in rows]


class DBSupervisionRepo(_DBRepo):
    def find_active_by_staff_id(self, staff_id: int) -> List[Supervision]:
        rows = self._db.fetchall(
            "select id, staff_id, group_id, start_date, end_date, role from active.group_supervisors "
            "where staff_id = %s and (end_date is null or end_date > now()) order by id",
            (staff_id,),
        )
        return [
            Supervision(
                id=int(r[0]),
                staff_id=int(r[1]),
                group_id=int(r[2]),
                start_date=_as_datetime(r[3]),
                end_date=_as_datetime(r[4]),
                role=r[5] or "supervisor",
            )
            for r in rows
        ]


class DBVisitRepo(_DBRepo):
    def find_by_active_group_id(self, active_group_id: int) -> List[Visit]:
        rows = self._db.fetchall(
            "select id, student_id, active_group_id, entry_time, exit_time from active.visits "
            "where active_group_id = %s order by entry_time, id",
            (active_group_id,),
        )
        return [
            Visit(
                id=int(r[0]),
                student_id=int(r[1]),
                active_group_id=int(r[2]),
                entry_time=_as_datetime(r[3]),
                exit_time=_as_datetime(r[4]),
            )
            for r in rows
        ]


def db_repositories(session: DBSession) -> Repositories:
    return Repositories(
        accounts=DBAccountRepo(session),
        persons=DBPersonRepo(session),
        staff=DBStaffRepo(session),
        teachers=DBTeacherRepo(session),
        students=DBStudentRepo(session),
        profiles=DBProfileRepo(session),
        education_groups=DBEducationGroupRepo(session),
        substitutions=DBSubstitutionRepo(session),
        activity_groups=DBActivityGroupRepo(session),
        active_groups=DBActiveGroupRepo(session),
        supervisions=DBSupervisionRepo(session),
        visits=DBVisitRepo(session),
    )


class DBTransactionRunner:
    """Run a unit of work on one connection inside one transaction.

    Leaving ``conn.transaction()`` normally commits; an exception rolls back
    and propagates unchanged.
    """

    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or _dsn()

    def run(self, fn: Callable[[Repositories], T]) -> T:
        with psycopg.connect(self._dsn) as conn:
            with conn.transaction():
                return fn(db_repositories(DBSession(conn=conn)))


__all__ = [
    "DBSession",
    "DBTransactionRunner",
    "db_repositories",
]
