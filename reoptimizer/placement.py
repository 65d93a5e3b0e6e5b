"""First-fit placement of singles into groups of the same slot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .api import (
    Action,
    ExamTable,
    Group,
    Movement,
    Reason,
    Rejection,
    Single,
    SlotKey,
    first_free_position,
    normalize_positions,
)
from .availability import BlockedPredicate
from .compat import can_merge
from .slots import ordered_slots


@dataclass
class PlacementOutcome:
    """Movements and unplaced singles produced by a placement pass."""

    movements: List[Movement] = field(default_factory=list)
    unplaced: List[Tuple[Single, Rejection]] = field(default_factory=list)


def _reject(single: Single, reason: Reason, reasons=None, area_id=None) -> Rejection:
    return Rejection(
        table_number=single.table_number,
        date=single.date,
        shift=single.shift,
        area_id=single.area_id if area_id is None else area_id,
        reason=reason,
        reasons=reasons,
    )


def _distinct(reasons: List[Reason]) -> List[Reason]:
    seen: List[Reason] = []
    for reason in reasons:
        if reason not in seen:
            seen.append(reason)
    return sorted(seen, key=lambda r: r.value)


def find_first_fit(
    single: Single,
    table: ExamTable,
    candidate_ids: List[int],
    groups: Mapping[int, Group],
    tables: Mapping[int, ExamTable],
    is_blocked: BlockedPredicate,
) -> Tuple[Optional[int], List[Reason]]:
    """Return the first compatible group id and the reasons seen before it."""

    reasons: List[Reason] = []
    for group_id in candidate_ids:
        check = can_merge(table, groups[group_id], tables, is_blocked, area_id=single.area_id)
        if check.ok:
            return group_id, reasons
        reasons.append(check.reason)
    return None, reasons


def merge_into_group(
    store,
    single: Single,
    group_id: int,
    groups: Dict[int, Group],
    *,
    dry_run: bool = False,
) -> Tuple[Optional[Movement], Optional[Rejection]]:
    """Write ``single`` into the first free position of the stored group row.

    The row is re-read right before the write so concurrent changes since
    the indexes were built win over the earlier snapshot.
    """

    row = store.get_group_row(group_id)
    if row is None:
        return None, _reject(single, Reason.GROUP_MISSING)

    before = normalize_positions(row)
    group = groups[group_id]

    if single.table_number in before:
        store.delete_single(single.table_number, single.date, single.shift)
        group.positions = before
        return Movement(
            table_number=single.table_number,
            date=single.date,
            shift=single.shift,
            area_id=single.area_id,
            group_id=group_id,
            action=Action.ALREADY_IN_GROUP,
        ), None

    free = first_free_position(before)
    if free is None:
        # capacity was checked on the indexed snapshot; a full row here means
        # the stored data disagrees with it
        return None, _reject(single, Reason.GROUP_NO_FREE_SLOT)

    after = list(before)
    after[free] = single.table_number
    store.update_group(group_id, after)
    store.delete_single(single.table_number, single.date, single.shift)
    group.positions = after

    return Movement(
        table_number=single.table_number,
        date=single.date,
        shift=single.shift,
        area_id=single.area_id,
        group_id=group_id,
        action=Action.SIMULATED_MERGE if dry_run else Action.MERGED,
        before=before,
        after=after,
    ), None


def place_singles(
    store,
    groups_by_slot: Mapping[SlotKey, List[Group]],
    singles_by_slot: Mapping[SlotKey, List[Single]],
    tables: Mapping[int, ExamTable],
    is_blocked: BlockedPredicate,
    groups: Dict[int, Group],
    *,
    dry_run: bool = False,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> PlacementOutcome:
    """Try to merge every single into a group of its own slot.

    ``groups`` maps group ids to their in-memory state and is updated after
    each successful merge, so later singles of the same slot see the larger
    group when checking capacity and student collisions.
    """

    outcome = PlacementOutcome()
    report = progress_callback or (lambda _msg: None)

    for key in ordered_slots(singles_by_slot):
        singles = singles_by_slot[key]
        candidate_ids = [g.group_id for g in groups_by_slot.get(key, [])]

        if not candidate_ids:
            for single in singles:
                outcome.unplaced.append((single, _reject(single, Reason.NO_GROUPS_IN_SLOT)))
            report(f"{key.date} shift {key.shift} area {key.area_id}: no groups for {len(singles)} single(s)")
            continue

        for single in singles:
            table = tables.get(single.table_number)
            if table is None or table.area_id != key.area_id:
                area = table.area_id if table is not None else None
                outcome.unplaced.append(
                    (single, _reject(single, Reason.AREA_INCONSISTENT, area_id=area if area is not None else -1))
                )
                continue

            group_id, reasons = find_first_fit(single, table, candidate_ids, groups, tables, is_blocked)
            if group_id is None:
                outcome.unplaced.append(
                    (single, _reject(single, Reason.NO_COMPATIBLE_GROUP, reasons=_distinct(reasons)))
                )
                continue

            movement, rejection = merge_into_group(store, single, group_id, groups, dry_run=dry_run)
            if rejection is not None:
                if rejection.reason is Reason.GROUP_MISSING:
                    candidate_ids.remove(group_id)
                    groups.pop(group_id, None)
                outcome.unplaced.append((single, rejection))
                report(f"table {single.table_number}: {rejection.reason.value} for group {group_id}")
                continue
            outcome.movements.append(movement)
            report(f"table {single.table_number} -> group {group_id} ({movement.action.value})")

    return outcome
