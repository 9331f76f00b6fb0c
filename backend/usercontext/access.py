"""
Group-scoped authorization and the reads it protects.

Permissions:
    An actor may act on a live session (active group) when it appears in the
    sessions derived from the actor's activity-group supervision, or, failing
    that, in the sessions the actor supervises directly. The two sets are
    not guaranteed to overlap: a supervisor added mid-session only shows up in
    the second one.

Behavior:
    - ``authorize`` raises ``GroupNotFound`` for unknown ids and
      ``NotAuthorized`` for groups outside both sets.
    - Roster and visit reads call ``authorize`` first and query visits for the
      authorized group id only.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from .domain import ActiveGroup, Student, Visit
from .errors import GroupNotFound, NotAuthorized, UserContextError, is_not_linked
from .groups import GroupAggregator
from .identity import IdentityChain, require_actor
from .ports import Repositories

OP_CHECK_GROUP_ACCESS = "check group access"
OP_GROUP_STUDENTS = "get group students"
OP_GROUP_VISITS = "get group visits"


class AccessGuard:
    def __init__(self, repos: Repositories, identity: IdentityChain, groups: GroupAggregator) -> None:
        self._repos = repos
        self._identity = identity
        self._groups = groups

    def authorize(self, actor_id: Optional[int], group_id: int) -> ActiveGroup:
        require_actor(actor_id)
        try:
            group = self._repos.active_groups.find_by_id(group_id)
        except Exception as exc:
            raise UserContextError(OP_CHECK_GROUP_ACCESS, exc) from exc
        if group is None:
            raise UserContextError(OP_CHECK_GROUP_ACCESS, GroupNotFound())

        try:
            staff = self._identity.current_staff(actor_id)
        except UserContextError as exc:
            if is_not_linked(exc):
                raise UserContextError(OP_CHECK_GROUP_ACCESS, NotAuthorized()) from exc
            raise

        if any(g.id == group_id for g in self._groups.active_groups_from_activities(staff)):
            return group
        if any(g.id == group_id for g in self._groups.supervised_groups_for(staff)):
            return group
        raise UserContextError(OP_CHECK_GROUP_ACCESS, NotAuthorized())

    def group_students(self, actor_id: Optional[int], group_id: int) -> List[Student]:
        try:
            self.authorize(actor_id, group_id)
        except UserContextError as exc:
            raise UserContextError(OP_GROUP_STUDENTS, exc) from exc

        try:
            visits = self._repos.visits.find_by_active_group_id(group_id)
        except Exception as exc:
            raise UserContextError(OP_GROUP_STUDENTS, exc) from exc

        student_ids: Dict[int, None] = {}
        for visit in visits:
            if visit.active_group_id != group_id:
                continue
            student_ids.setdefault(visit.student_id, None)

        students: List[Student] = []
        for student_id in student_ids:
            try:
                student = self._repos.students.find_by_id(student_id)
            except Exception as exc:
                raise UserContextError(OP_GROUP_STUDENTS, exc) from exc
            if student is not None:
                students.append(student)
        return students

    def group_visits(self, actor_id: Optional[int], group_id: int) -> List[Visit]:
        try:
            self.authorize(actor_id, group_id)
        except UserContextError as exc:
            raise UserContextError(OP_GROUP_VISITS, exc) from exc

        try:
            visits = self._repos.visits.find_by_active_group_id(group_id)
        except Exception as exc:
            raise UserContextError(OP_GROUP_VISITS, exc) from exc
        return [v for v in visits if v.active_group_id == group_id and v.is_active()]


__all__ = ["AccessGuard"]
