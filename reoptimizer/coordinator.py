"""Transactional boundary and reporting for a reoptimization run."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .api import Group, Movement, ReoptimizeRequest, ReoptimizeResult, normalize_positions, validate_filters
from .availability import build_availability_index
from .placement import place_singles
from .relocation import ScheduleContext, pair_with_donors, relocate_singles
from .slots import build_slot_indexes, filter_by_slot


class SimulatedStore:
    """Wrap a store so writes are recorded instead of persisted.

    Reads of groups touched earlier in the run return the simulated contents,
    which keeps a dry run's decisions identical to a committed run.
    """

    def __init__(self, store):
        self._store = store
        self._groups: Dict[int, List[int]] = {}
        self.journal: List[str] = []

    def __getattr__(self, name):
        return getattr(self._store, name)

    def get_group_row(self, group_id: int) -> Optional[List[int]]:
        if group_id in self._groups:
            return list(self._groups[group_id])
        return self._store.get_group_row(group_id)

    def update_group(self, group_id: int, positions: List[int]) -> None:
        self._groups[group_id] = normalize_positions(positions)
        self.journal.append(f"would update group {group_id} to {self._groups[group_id]}")

    def insert_group(self, date: str, shift: int, positions: List[int]) -> None:
        self.journal.append(f"would insert group {normalize_positions(positions)} at {date} shift {shift}")
        return None

    def delete_single(self, table_number: int, date: str, shift: int) -> int:
        self.journal.append(f"would delete single {table_number} at {date} shift {shift}")
        return 0

    def move_table(self, table_number: int, date: str, shift: int) -> None:
        self.journal.append(f"would move table {table_number} to {date} shift {shift}")


def run_reoptimization(
    store,
    request: Optional[ReoptimizeRequest] = None,
    *,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> ReoptimizeResult:
    """Run every enabled pass against ``store`` as one unit of work.

    Filters are validated before the store is touched.  Outside a dry run a
    single transaction covers the whole batch; any exception rolls it back in
    full and is re-raised, so no partial movement list ever escapes.
    """

    request = request or ReoptimizeRequest()
    date, shift = validate_filters(request.date, request.shift)
    dry_run = request.dry_run
    report = progress_callback or (lambda _msg: None)

    writer = SimulatedStore(store) if dry_run else store
    if not dry_run:
        store.begin()
    try:
        tables = store.load_tables()
        is_blocked = build_availability_index(store.load_teacher_blocks())
        all_groups = store.load_groups()
        groups_by_slot, singles_by_slot = build_slot_indexes(
            all_groups, store.load_singles(), date=date, shift=shift
        )
        groups: Dict[int, Group] = {g.group_id: g for g in filter_by_slot(all_groups, date, shift)}
        report(
            f"loaded {len(groups)} group(s) and "
            f"{sum(len(v) for v in singles_by_slot.values())} single(s)"
        )

        outcome = place_singles(
            writer, groups_by_slot, singles_by_slot, tables, is_blocked, groups,
            dry_run=dry_run, progress_callback=progress_callback,
        )
        movements: List[Movement] = list(outcome.movements)
        pending = outcome.unplaced

        if pending and (request.relocate or request.use_donors):
            ctx = ScheduleContext.build(tables, store.load_prerequisite_rows())
            if request.relocate:
                moved, pending = relocate_singles(
                    writer, pending, tables, groups, is_blocked, ctx,
                    dry_run=dry_run, progress_callback=progress_callback,
                )
                movements.extend(moved)
            if request.use_donors and pending:
                moved, pending = pair_with_donors(
                    writer, pending, tables, groups, is_blocked, ctx,
                    dry_run=dry_run, progress_callback=progress_callback,
                )
                movements.extend(moved)

        if not dry_run:
            store.commit()
    except Exception:
        if not dry_run:
            store.rollback()
        logging.exception("Table reoptimization failed; no changes were kept")
        raise

    report(f"{len(movements)} movement(s), {len(pending)} single(s) left unplaced")
    return ReoptimizeResult(
        dry_run=dry_run,
        movements=movements,
        unplaced=[rejection for _single, rejection in pending],
        journal=writer.journal if dry_run else [],
    )
