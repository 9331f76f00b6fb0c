"""
Group aggregation for the current actor.

Intent:
    Answer "which groups may this actor act on" from three independent sources:
    education groups assigned to the actor as teacher, education groups the
    actor covers today as a substitute, and live sessions (active groups) the
    actor supervises.

Behavior:
    - Actors without staff/teacher linkage get empty results, not errors.
    - Genuine repository failures propagate wrapped in ``UserContextError``.
    - A failing substitution-group lookup does not abort ``my_groups``; it is
      recorded in a ``PartialError`` returned next to the resolved groups.
      When nothing could be resolved the ``PartialError`` is raised instead.
    - Reads are sequential; substitution counts are small.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set

from .domain import ActiveGroup, ActivityGroup, EducationGroup, Staff, Substitution, Teacher
from .errors import PartialError, UserContextError, is_not_linked
from .identity import IdentityChain
from .ports import Repositories

logger = logging.getLogger(__name__)

OP_MY_GROUPS = "get my groups"
OP_MY_GROUPS_SUBSTITUTIONS = "get my groups (substitutions)"
OP_MY_GROUPS_SUBSTITUTION_GROUPS = "get my groups (load substitution groups)"
OP_MY_ACTIVITY_GROUPS = "get my activity groups"
OP_MY_ACTIVE_GROUPS = "get my active groups"
OP_SUPERVISED_GROUPS = "get supervised groups"
OP_SUBSTITUTION_GROUP_IDS = "get active substitution group IDs"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MyGroups:
    """Education groups of the actor plus an optional partial-failure report."""

    groups: List[EducationGroup]
    partial: Optional[PartialError] = None

    @property
    def ids(self) -> Set[int]:
        return {g.id for g in self.groups}

    def __iter__(self):
        return iter(self.groups)

    def __len__(self) -> int:
        return len(self.groups)


def merge_active_groups(primary: Iterable[ActiveGroup], additional: Iterable[ActiveGroup]) -> List[ActiveGroup]:
    """Union by id; entries from ``primary`` win."""
    merged: Dict[int, ActiveGroup] = {}
    for group in primary:
        merged.setdefault(group.id, group)
    for group in additional:
        merged.setdefault(group.id, group)
    return list(merged.values())


class GroupAggregator:
    def __init__(
        self,
        repos: Repositories,
        identity: IdentityChain,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repos = repos
        self._identity = identity
        self._clock = clock

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _staff_or_none(self, actor_id: Optional[int]) -> Optional[Staff]:
        """Staff of the actor, ``None`` when the actor is simply not staff."""
        try:
            return self._identity.current_staff(actor_id)
        except UserContextError as exc:
            if is_not_linked(exc):
                return None
            raise

    # --- Education groups ------------------------------------------------------
    def _resolve_staff_and_teacher(self, actor_id: Optional[int]):
        staff: Optional[Staff] = None
        teacher: Optional[Teacher] = None
        staff_err: Optional[BaseException] = None
        teacher_err: Optional[BaseException] = None
        try:
            staff = self._identity.current_staff(actor_id)
        except UserContextError as exc:
            staff_err = exc
            # Teacher linkage implies staff linkage; the same failure applies.
            teacher_err = exc
        if staff is not None:
            try:
                teacher = self._identity.resolve_teacher(staff)
            except UserContextError as exc:
                teacher_err = exc
        for err in (teacher_err, staff_err):
            if err is not None and not is_not_linked(err):
                raise UserContextError(OP_MY_GROUPS, err)
        return staff, teacher

    def my_groups(self, actor_id: Optional[int]) -> MyGroups:
        staff, teacher = self._resolve_staff_and_teacher(actor_id)
        if staff is None and teacher is None:
            return MyGroups(groups=[])

        accumulator: Dict[int, EducationGroup] = {}
        if teacher is not None:
            self._add_teacher_groups(teacher.id, accumulator)

        partial: Optional[PartialError] = None
        if staff is not None:
            partial = self._add_substitution_groups(staff.id, accumulator)

        groups = list(accumulator.values())
        if partial is None or partial.ok:
            return MyGroups(groups=groups)

        logger.warning(
            "usercontext.my_groups.partial_failure success=%d failure=%d failed_ids=%s op=%s",
            partial.success_count,
            partial.failure_count,
            partial.failed_ids,
            partial.op,
        )
        if groups:
            return MyGroups(groups=groups, partial=partial)
        raise partial

    def _add_teacher_groups(self, teacher_id: int, accumulator: Dict[int, EducationGroup]) -> None:
        try:
            groups = self._repos.education_groups.find_by_teacher(teacher_id)
        except Exception as exc:
            raise UserContextError(OP_MY_GROUPS, exc) from exc
        for group in groups:
            accumulator.setdefault(group.id, group)

    def _add_substitution_groups(self, staff_id: int, accumulator: Dict[int, EducationGroup]) -> Optional[PartialError]:
        try:
            substitutions = self._repos.substitutions.find_active_by_substitute(staff_id, self._today())
        except Exception as exc:
            logger.warning("usercontext.my_groups.substitutions_failed staff_id=%s reason=%s", staff_id, exc.__class__.__name__)
            return PartialError(OP_MY_GROUPS_SUBSTITUTIONS, failure_count=1, last_error=exc)

        partial = PartialError(OP_MY_GROUPS_SUBSTITUTION_GROUPS)
        for sub in substitutions:
            try:
                group = self._resolve_substitution_group(sub)
            except Exception as exc:
                logger.warning(
                    "usercontext.my_groups.substitution_group_failed group_id=%s reason=%s",
                    sub.group_id,
                    exc.__class__.__name__,
                )
                partial.record_failure(sub.group_id, exc)
                continue
            if group is None:
                # Dangling substitution; nothing to add and nothing failed.
                continue
            accumulator.setdefault(group.id, group)
            partial.record_success()
        return partial

    def _resolve_substitution_group(self, sub: Substitution) -> Optional[EducationGroup]:
        if sub.group is not None:
            return sub.group
        return self._repos.education_groups.find_by_id(sub.group_id)

    def substituted_group_ids(self, staff_id: int) -> Set[int]:
        """Groups the staff member covers today without replacing anyone."""
        try:
            substitutions = self._repos.substitutions.find_active_by_substitute(staff_id, self._today())
        except Exception as exc:
            raise UserContextError(OP_SUBSTITUTION_GROUP_IDS, exc) from exc
        return {sub.group_id for sub in substitutions if sub.regular_staff_id is None}

    # --- Activity and active groups --------------------------------------------
    def my_activity_groups(self, actor_id: Optional[int]) -> List[ActivityGroup]:
        staff = self._staff_or_none(actor_id)
        if staff is None:
            return []
        try:
            return list(self._repos.activity_groups.find_by_staff_supervisor(staff.id))
        except Exception as exc:
            raise UserContextError(OP_MY_ACTIVITY_GROUPS, exc) from exc

    def active_groups_from_activities(self, staff: Staff) -> List[ActiveGroup]:
        """Live sessions of the activity groups the staff member supervises."""
        try:
            activity_groups = self._repos.activity_groups.find_by_staff_supervisor(staff.id)
        except Exception as exc:
            raise UserContextError(f"{OP_MY_ACTIVE_GROUPS} - activity groups", exc) from exc
        result: List[ActiveGroup] = []
        for group in activity_groups:
            try:
                result.extend(self._repos.active_groups.find_active_by_group_id(group.id))
            except Exception as exc:
                raise UserContextError(f"{OP_MY_ACTIVE_GROUPS} - activity active", exc) from exc
        return result

    def supervised_groups_for(self, staff: Staff) -> List[ActiveGroup]:
        """Live sessions where the staff member holds an unexpired supervision."""
        try:
            supervisions = self._repos.supervisions.find_active_by_staff_id(staff.id)
        except Exception as exc:
            raise UserContextError(OP_SUPERVISED_GROUPS, exc) from exc

        now = self._clock()
        group_ids: List[int] = []
        for supervision in supervisions:
            if not supervision.is_active(now):
                logger.debug(
                    "usercontext.supervised_groups.skip_ended supervision_id=%s group_id=%s staff_id=%s",
                    supervision.id,
                    supervision.group_id,
                    staff.id,
                )
                continue
            if supervision.group_id not in group_ids:
                group_ids.append(supervision.group_id)
        if not group_ids:
            return []

        try:
            by_id = self._repos.active_groups.find_by_ids(group_ids)
        except Exception as exc:
            raise UserContextError(OP_SUPERVISED_GROUPS, exc) from exc
        return [by_id[gid] for gid in group_ids if gid in by_id and by_id[gid].is_active()]

    def my_supervised_groups(self, actor_id: Optional[int]) -> List[ActiveGroup]:
        staff = self._staff_or_none(actor_id)
        if staff is None:
            return []
        return self.supervised_groups_for(staff)

    def my_active_groups(self, actor_id: Optional[int]) -> List[ActiveGroup]:
        staff = self._staff_or_none(actor_id)
        if staff is None:
            return []
        from_activities = self.active_groups_from_activities(staff)
        try:
            supervised = self.supervised_groups_for(staff)
        except UserContextError as exc:
            raise UserContextError(f"{OP_MY_ACTIVE_GROUPS} - supervised", exc) from exc
        return merge_active_groups(from_activities, supervised)


__all__ = ["GroupAggregator", "MyGroups", "merge_active_groups", "utc_now"]
