"""
Group-scoped authorization and the roster/visit reads behind it.
"""
from __future__ import annotations

import pytest

from backend.tests.utils.school import (
    ACTIVITY_SESSION,
    ENDED_ACTIVITY_SESSION,
    FOREIGN_SESSION,
    NO_PERSON,
    NO_STAFF,
    NOW,
    SUBSTITUTE,
    SUPERVISED_SESSION,
    TEACHER,
    TEACHER_STAFF_ID,
)
from backend.usercontext.domain import Supervision
from backend.usercontext.errors import (
    GroupNotFound,
    NotAuthenticated,
    NotAuthorized,
    UserContextError,
    is_error,
)


def test_authorize_via_activity_supervision(service):
    assert service.access.authorize(TEACHER, ACTIVITY_SESSION).id == ACTIVITY_SESSION


def test_authorize_via_direct_supervision(service):
    assert service.access.authorize(SUBSTITUTE, SUPERVISED_SESSION).id == SUPERVISED_SESSION


@pytest.mark.parametrize(
    "actor, group_id",
    [
        (TEACHER, FOREIGN_SESSION),
        (TEACHER, SUPERVISED_SESSION),
        (SUBSTITUTE, ACTIVITY_SESSION),
        # ended sessions are not part of the activity-derived set
        (TEACHER, ENDED_ACTIVITY_SESSION),
        (NO_STAFF, ACTIVITY_SESSION),
        (NO_PERSON, ACTIVITY_SESSION),
    ],
)
def test_authorize_denies_groups_outside_both_sets(service, actor, group_id):
    with pytest.raises(UserContextError) as excinfo:
        service.access.authorize(actor, group_id)
    assert is_error(excinfo.value, NotAuthorized)
    assert excinfo.value.op == "check group access"


def test_authorize_unknown_group(service):
    with pytest.raises(UserContextError) as excinfo:
        service.access.authorize(TEACHER, 424242)
    assert is_error(excinfo.value, GroupNotFound)


def test_authorize_requires_actor_before_any_lookup(service, monkeypatch):
    def unexpected(group_id):
        raise AssertionError("group lookup before authentication")

    monkeypatch.setattr(service.access._repos.active_groups, "find_by_id", unexpected)
    with pytest.raises(UserContextError) as excinfo:
        service.access.authorize(None, ACTIVITY_SESSION)
    assert is_error(excinfo.value, NotAuthenticated)


def test_supervision_added_mid_session_grants_access(service, store):
    store.add(Supervision(id=9, staff_id=TEACHER_STAFF_ID, group_id=FOREIGN_SESSION, start_date=NOW))
    assert service.access.authorize(TEACHER, FOREIGN_SESSION).id == FOREIGN_SESSION


def test_group_students_deduplicated(service):
    students = service.get_group_students(TEACHER, ACTIVITY_SESSION)
    assert [s.id for s in students] == [7001, 7002]


def test_group_students_unauthorized_before_visit_query(service, monkeypatch):
    calls = []

    def record(active_group_id):
        calls.append(active_group_id)
        return []

    monkeypatch.setattr(service.access._repos.visits, "find_by_active_group_id", record)
    with pytest.raises(UserContextError) as excinfo:
        service.get_group_students(SUBSTITUTE, ACTIVITY_SESSION)
    assert is_error(excinfo.value, NotAuthorized)
    assert excinfo.value.op == "get group students"
    assert calls == []


def test_group_visits_only_active_visits_of_the_group(service):
    visits = service.get_group_visits(TEACHER, ACTIVITY_SESSION)
    assert sorted(v.id for v in visits) == [1, 3]
    assert all(v.exit_time is None for v in visits)


def test_group_visits_denied_for_foreign_group(service):
    with pytest.raises(UserContextError) as excinfo:
        service.get_group_visits(TEACHER, SUPERVISED_SESSION)
    assert is_error(excinfo.value, NotAuthorized)
