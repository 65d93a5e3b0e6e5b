"""Decide whether a single table can join a candidate group."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Set

from .api import ExamTable, Group, Reason
from .availability import BlockedPredicate


@dataclass(frozen=True)
class MergeCheck:
    """Outcome of :func:`can_merge`."""

    ok: bool
    reason: Optional[Reason] = None

    def __bool__(self) -> bool:
        return self.ok


COMPATIBLE = MergeCheck(ok=True)


def students_of(table_numbers: Iterable[int], tables: Mapping[int, ExamTable]) -> Set[int]:
    """Union of student ids across ``table_numbers``; unknown tables add nothing."""

    union: Set[int] = set()
    for number in table_numbers:
        table = tables.get(number)
        if table is not None:
            union.update(table.student_ids)
    return union


def blocked_teachers(table: ExamTable, date: str, shift: int, is_blocked: BlockedPredicate) -> bool:
    return any(is_blocked(teacher_id, date, shift) for teacher_id in table.teacher_ids)


def can_merge(
    table: ExamTable,
    group: Group,
    tables: Mapping[int, ExamTable],
    is_blocked: BlockedPredicate,
    *,
    area_id: Optional[int] = None,
) -> MergeCheck:
    """Check whether ``table`` can be placed in ``group``.

    Checks run in order and stop at the first failure: capacity, subject
    area, student collision with the tables already in the group and teacher
    availability at the group's date and shift.  ``area_id`` defaults to the
    table's own area; the placement pass passes the slot's area instead.
    Neither argument is modified.

    A table that is already a member is reported compatible so the caller
    can clean up its stale single row instead of colliding with itself.
    """

    if table.table_number in group.members:
        return COMPATIBLE

    if group.is_full:
        return MergeCheck(ok=False, reason=Reason.GROUP_FULL)

    expected_area = table.area_id if area_id is None else area_id
    if group.area_id != expected_area:
        return MergeCheck(ok=False, reason=Reason.AREA_MISMATCH)

    if students_of(group.members, tables) & set(table.student_ids):
        return MergeCheck(ok=False, reason=Reason.STUDENT_CONFLICT)

    if blocked_teachers(table, group.date, group.shift, is_blocked):
        return MergeCheck(ok=False, reason=Reason.TEACHER_UNAVAILABLE)

    return COMPATIBLE
