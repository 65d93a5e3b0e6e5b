"""Extra passes for singles the same-slot placement could not resolve.

Pass 2 moves a single to another date/shift where a group of its area has
room.  Pass 3 breaks a full group: one of its tables (the donor) moves to the
single's slot and both form a new group.  Either move must keep every
student free of a second exam in the target slot and must keep prerequisite
order (for a student and a prerequisite chain, the lowest course table sits
in an earlier slot than the advanced ones).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .api import (
    GROUP_CAPACITY,
    Action,
    ExamTable,
    Group,
    Movement,
    Reason,
    Rejection,
    Single,
    first_free_position,
    normalize_positions,
)
from .availability import BlockedPredicate
from .compat import blocked_teachers, can_merge

Pending = List[Tuple[Single, Rejection]]
SlotPair = Tuple[str, int]

UNKNOWN_SLOT_RANK = 9999


@dataclass
class ScheduleContext:
    """Where each table and student currently sits, plus ordering rules."""

    slot_order: Dict[SlotPair, int] = field(default_factory=dict)
    table_slots: Dict[int, SlotPair] = field(default_factory=dict)
    student_slots: Dict[int, Counter] = field(default_factory=dict)
    constraints: Dict[int, List[Tuple[str, int]]] = field(default_factory=dict)

    @classmethod
    def build(cls, tables: Mapping[int, ExamTable], prerequisite_rows: Iterable[Mapping[str, Any]]) -> "ScheduleContext":
        ctx = cls()
        for number, table in tables.items():
            if table.date is None or table.shift is None:
                continue
            slot = (table.date, int(table.shift))
            ctx.table_slots[number] = slot
            for student in table.student_ids:
                ctx.student_slots.setdefault(student, Counter())[slot] += 1
        for idx, slot in enumerate(sorted(set(ctx.table_slots.values()))):
            ctx.slot_order[slot] = idx

        by_chain: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
        for row in prerequisite_rows:
            key = (row["student_id"], row["chain"])
            by_chain.setdefault(key, []).append((int(row["course"]), int(row["table_number"])))
        for entries in by_chain.values():
            if len(entries) < 2:
                continue
            lowest = min(course for course, _ in entries)
            bases = [n for course, n in entries if course == lowest]
            advanced = [n for course, n in entries if course > lowest]
            for base in bases:
                for adv in advanced:
                    ctx.constraints.setdefault(base, []).append(("base", adv))
                    ctx.constraints.setdefault(adv, []).append(("advanced", base))
        return ctx

    def slot_rank(self, date: str, shift: int) -> Optional[int]:
        return self.slot_order.get((date, int(shift)))

    def respects_prerequisites(self, table_number: int, date: str, shift: int) -> bool:
        """Whether moving ``table_number`` to ``(date, shift)`` keeps course order."""

        target = self.slot_rank(date, shift)
        if target is None:
            return True
        for role, other in self.constraints.get(table_number, ()):
            other_slot = self.table_slots.get(other)
            other_rank = self.slot_order.get(other_slot) if other_slot else None
            if other_rank is None:
                continue
            if role == "base" and target >= other_rank:
                return False
            if role == "advanced" and target <= other_rank:
                return False
        return True

    def has_clash(self, table: ExamTable, date: str, shift: int) -> bool:
        """True if a student of ``table`` already sits another exam at the slot."""

        slot = (date, int(shift))
        own = 1 if self.table_slots.get(table.table_number) == slot else 0
        for student in table.student_ids:
            if self.student_slots.get(student, Counter())[slot] - own > 0:
                return True
        return False

    def move(self, table: ExamTable, date: str, shift: int) -> None:
        new_slot = (date, int(shift))
        old_slot = self.table_slots.get(table.table_number)
        for student in table.student_ids:
            counts = self.student_slots.setdefault(student, Counter())
            if old_slot is not None and counts[old_slot] > 0:
                counts[old_slot] -= 1
            counts[new_slot] += 1
        self.table_slots[table.table_number] = new_slot


def _usable(single: Single, rejection: Rejection, tables: Mapping[int, ExamTable]) -> Optional[ExamTable]:
    if rejection.reason is Reason.AREA_INCONSISTENT:
        return None
    table = tables.get(single.table_number)
    if table is None or table.area_id is None:
        return None
    return table


def relocate_singles(
    store,
    pending: Pending,
    tables: Mapping[int, ExamTable],
    groups: Dict[int, Group],
    is_blocked: BlockedPredicate,
    ctx: ScheduleContext,
    *,
    dry_run: bool = False,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> Tuple[List[Movement], Pending]:
    """Move pending singles into a group of the same area in another slot.

    Among the compatible groups the one with the fewest tables wins, ties
    broken by the earliest slot.
    """

    report = progress_callback or (lambda _msg: None)
    movements: List[Movement] = []
    still_pending: Pending = []

    for single, rejection in pending:
        table = _usable(single, rejection, tables)
        if table is None:
            still_pending.append((single, rejection))
            continue

        best: Optional[Group] = None
        best_score = None
        for group in groups.values():
            if not can_merge(table, group, tables, is_blocked):
                continue
            if ctx.has_clash(table, group.date, group.shift):
                continue
            if not ctx.respects_prerequisites(table.table_number, group.date, group.shift):
                continue
            rank = ctx.slot_rank(group.date, group.shift)
            score = group.size * 100 + (rank if rank is not None else UNKNOWN_SLOT_RANK)
            if best_score is None or score < best_score:
                best, best_score = group, score

        if best is None:
            still_pending.append((single, rejection))
            continue

        row = store.get_group_row(best.group_id)
        if row is None:
            still_pending.append((single, rejection))
            continue
        before = normalize_positions(row)
        after = list(before)
        if single.table_number not in before:
            free = first_free_position(before)
            if free is None:
                still_pending.append((single, rejection))
                continue
            after[free] = single.table_number

        store.move_table(single.table_number, best.date, best.shift)
        if after != before:
            store.update_group(best.group_id, after)
        store.delete_single(single.table_number, single.date, single.shift)
        best.positions = after
        ctx.move(table, best.date, best.shift)

        movements.append(Movement(
            table_number=single.table_number,
            date=best.date,
            shift=best.shift,
            area_id=table.area_id,
            group_id=best.group_id,
            action=Action.SIMULATED_RELOCATION if dry_run else Action.RELOCATED,
            before=before,
            after=after,
            extra={"from_date": single.date, "from_shift": single.shift},
        ))
        report(
            f"table {single.table_number}: {single.date}/{single.shift} -> "
            f"{best.date}/{best.shift} in group {best.group_id}"
        )

    return movements, still_pending


def _find_donor(
    single: Single,
    table: ExamTable,
    tables: Mapping[int, ExamTable],
    groups: Mapping[int, Group],
    is_blocked: BlockedPredicate,
    ctx: ScheduleContext,
) -> Optional[Tuple[Group, ExamTable]]:
    for group in groups.values():
        if group.area_id != table.area_id or group.size != GROUP_CAPACITY:
            continue
        for number in group.members:
            donor = tables.get(number)
            if donor is None:
                continue
            if donor.student_ids & table.student_ids:
                continue
            if blocked_teachers(donor, single.date, single.shift, is_blocked):
                continue
            if ctx.has_clash(donor, single.date, single.shift):
                continue
            if not ctx.respects_prerequisites(number, single.date, single.shift):
                continue
            return group, donor
    return None


def pair_with_donors(
    store,
    pending: Pending,
    tables: Mapping[int, ExamTable],
    groups: Dict[int, Group],
    is_blocked: BlockedPredicate,
    ctx: ScheduleContext,
    *,
    dry_run: bool = False,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> Tuple[List[Movement], Pending]:
    """Pair each pending single with a table taken from a full group.

    The donor group keeps its remaining three tables packed from position 1
    and a new two-table group is created in the single's slot.
    """

    report = progress_callback or (lambda _msg: None)
    movements: List[Movement] = []
    still_pending: Pending = []

    for single, rejection in pending:
        table = _usable(single, rejection, tables)
        found = _find_donor(single, table, tables, groups, is_blocked, ctx) if table is not None else None
        if found is None:
            still_pending.append((single, rejection))
            continue
        source, donor = found

        row = store.get_group_row(source.group_id)
        before = normalize_positions(row) if row is not None else None
        if before is None or donor.table_number not in before:
            still_pending.append((single, rejection))
            continue
        after = normalize_positions([n for n in before if n and n != donor.table_number])
        new_positions = normalize_positions([single.table_number, donor.table_number])

        store.update_group(source.group_id, after)
        store.move_table(donor.table_number, single.date, single.shift)
        new_group_id = store.insert_group(single.date, single.shift, new_positions)
        store.delete_single(single.table_number, single.date, single.shift)

        source.positions = after
        ctx.move(donor, single.date, single.shift)
        if new_group_id is not None:
            groups[new_group_id] = Group(new_group_id, single.date, single.shift, table.area_id, new_positions)

        movements.append(Movement(
            table_number=single.table_number,
            date=single.date,
            shift=single.shift,
            area_id=table.area_id,
            group_id=new_group_id,
            action=Action.SIMULATED_DONOR_REGROUP if dry_run else Action.DONOR_REGROUPED,
            before=before,
            after=after,
            extra={
                "donor_table": donor.table_number,
                "source_group_id": source.group_id,
                "new_group": new_positions,
            },
        ))
        report(
            f"table {single.table_number}: paired with donor {donor.table_number} "
            f"from group {source.group_id}"
        )

    return movements, still_pending
