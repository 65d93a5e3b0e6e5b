"""Tests for the first-fit placement pass."""

import os
import random
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from reoptimizer.api import Action, ExamTable, Group, Reason, Single, TeacherBlock
from reoptimizer.availability import build_availability_index
from reoptimizer.placement import place_singles
from reoptimizer.slots import build_slot_indexes

DATE = '2024-11-04'


class FakeStore:
    """In-memory stand-in for the group and single rows."""

    def __init__(self, groups, singles):
        self.rows = {g.group_id: list(g.positions) for g in groups}
        self.singles = {(s.table_number, s.date, s.shift) for s in singles}
        self.writes = []

    def get_group_row(self, group_id):
        row = self.rows.get(group_id)
        return list(row) if row is not None else None

    def update_group(self, group_id, positions):
        self.rows[group_id] = list(positions)
        self.writes.append(('update', group_id, list(positions)))

    def delete_single(self, table_number, date, shift):
        self.singles.discard((table_number, date, shift))
        self.writes.append(('delete', table_number))
        return 1


def table(number, students, teachers=(10,), area=7):
    return ExamTable(number, area, frozenset(students), frozenset(teachers))


def run(groups, singles, tables, blocks=(), store=None):
    store = store or FakeStore(groups, singles)
    state = {g.group_id: g for g in groups}
    groups_by_slot, singles_by_slot = build_slot_indexes(groups, singles)
    outcome = place_singles(
        store, groups_by_slot, singles_by_slot, tables,
        build_availability_index(blocks), state,
    )
    return outcome, store, state


def rejections(outcome):
    return {r.table_number: r for _s, r in outcome.unplaced}


def test_merge_then_student_conflict_in_same_group():
    tables = {
        101: table(101, {'A'}), 102: table(102, {'B'}),
        103: table(103, {'C'}, teachers={11}), 104: table(104, {'B'}, teachers={12}),
    }
    groups = [Group(1, DATE, 1, 7, [101, 102, 0, 0])]
    singles = [Single(103, DATE, 1, 7), Single(104, DATE, 1, 7)]

    outcome, store, state = run(groups, singles, tables)

    assert len(outcome.movements) == 1
    move = outcome.movements[0]
    assert move.table_number == 103
    assert move.group_id == 1
    assert move.action is Action.MERGED
    assert move.before == [101, 102, 0, 0]
    assert move.after == [101, 102, 103, 0]
    assert state[1].size == 3
    assert store.rows[1] == [101, 102, 103, 0]

    rejected = rejections(outcome)[104]
    assert rejected.reason is Reason.NO_COMPATIBLE_GROUP
    assert rejected.reasons == [Reason.STUDENT_CONFLICT]
    assert store.singles == {(104, DATE, 1)}


def test_only_candidate_full():
    tables = {n: table(n, {n}) for n in (101, 102, 105, 106, 103)}
    groups = [Group(1, DATE, 1, 7, [101, 102, 105, 106])]
    outcome, store, _ = run(groups, [Single(103, DATE, 1, 7)], tables)

    rejected = rejections(outcome)[103]
    assert rejected.reason is Reason.NO_COMPATIBLE_GROUP
    assert rejected.reasons == [Reason.GROUP_FULL]
    assert store.writes == []


def test_reasons_are_distinct_across_candidates():
    tables = {n: table(n, {n}) for n in range(101, 110)}
    tables[109] = table(109, {101})
    groups = [
        Group(1, DATE, 1, 7, [101, 0, 0, 0]),
        Group(2, DATE, 1, 7, [102, 103, 104, 105]),
        Group(3, DATE, 1, 7, [106, 107, 108, 0]),
    ]
    blocks = [TeacherBlock(10, date=DATE)]
    outcome, _, _ = run(groups, [Single(109, DATE, 1, 7)], tables, blocks)
    assert rejections(outcome)[109].reasons == [Reason.GROUP_FULL, Reason.STUDENT_CONFLICT, Reason.TEACHER_UNAVAILABLE]


def test_slot_without_groups():
    tables = {101: table(101, {1}), 103: table(103, {3})}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0])]
    singles = [Single(103, DATE, 2, 7)]
    outcome, store, _ = run(groups, singles, tables)
    rejected = rejections(outcome)[103]
    assert rejected.reason is Reason.NO_GROUPS_IN_SLOT
    assert rejected.reasons is None
    assert store.writes == []


def test_area_inconsistent_single_is_skipped():
    tables = {101: table(101, {1}), 103: table(103, {3}, area=8)}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0])]
    outcome, store, _ = run(groups, [Single(103, DATE, 1, 7), Single(555, DATE, 1, 7)], tables)
    rejected = rejections(outcome)
    assert rejected[103].reason is Reason.AREA_INCONSISTENT
    assert rejected[103].area_id == 8
    assert rejected[555].reason is Reason.AREA_INCONSISTENT
    assert rejected[555].area_id == -1
    assert store.writes == []


def test_first_fit_takes_first_indexed_group():
    tables = {n: table(n, {n}) for n in (101, 102, 103)}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0]), Group(2, DATE, 1, 7, [102, 0, 0, 0])]
    outcome, _, _ = run(groups, [Single(103, DATE, 1, 7)], tables)
    assert outcome.movements[0].group_id == 1


def test_teacher_block_skips_to_next_group():
    tables = {n: table(n, {n}) for n in (101, 102)}
    tables[103] = table(103, {3}, teachers={11})
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0]), Group(2, DATE, 1, 7, [102, 0, 0, 0])]
    outcome, _, _ = run(groups, [Single(103, DATE, 1, 7)], tables, [TeacherBlock(11, shift=1)])
    assert rejections(outcome)[103].reasons == [Reason.TEACHER_UNAVAILABLE]
    assert outcome.movements == []


def test_later_singles_see_grown_group():
    tables = {n: table(n, {n}) for n in (101, 103, 107, 108, 109)}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0])]
    singles = [Single(n, DATE, 1, 7) for n in (103, 107, 108, 109)]
    outcome, store, state = run(groups, singles, tables)

    assert [m.after for m in outcome.movements] == [
        [101, 103, 0, 0],
        [101, 103, 107, 0],
        [101, 103, 107, 108],
    ]
    assert rejections(outcome)[109].reasons == [Reason.GROUP_FULL]
    assert state[1].positions == store.rows[1] == [101, 103, 107, 108]


def test_table_already_in_stored_group_only_removes_single():
    tables = {n: table(n, {n}) for n in (101, 103)}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0])]
    store = FakeStore(groups, [Single(103, DATE, 1, 7)])
    store.rows[1] = [101, 103, 0, 0]
    outcome, store, _ = run(groups, [Single(103, DATE, 1, 7)], tables, store=store)

    move = outcome.movements[0]
    assert move.action is Action.ALREADY_IN_GROUP
    assert move.before is None and move.after is None
    assert 'before' not in move.as_dict()
    assert store.rows[1] == [101, 103, 0, 0]
    assert store.writes == [('delete', 103)]


def test_missing_group_row_is_reported_and_batch_continues():
    tables = {n: table(n, {n}) for n in (101, 102, 103, 104)}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0]), Group(2, DATE, 1, 7, [102, 0, 0, 0])]
    singles = [Single(103, DATE, 1, 7), Single(104, DATE, 1, 7)]
    store = FakeStore(groups, singles)
    del store.rows[1]
    outcome, store, _ = run(groups, singles, tables, store=store)

    assert rejections(outcome)[103].reason is Reason.GROUP_MISSING
    assert outcome.movements[0].table_number == 104
    assert outcome.movements[0].group_id == 2


def test_stored_group_without_free_position_is_not_corrected():
    tables = {n: table(n, {n}) for n in (101, 103)}
    groups = [Group(1, DATE, 1, 7, [101, 0, 0, 0])]
    store = FakeStore(groups, [Single(103, DATE, 1, 7)])
    store.rows[1] = [101, 120, 121, 122]
    outcome, store, _ = run(groups, [Single(103, DATE, 1, 7)], tables, store=store)

    assert rejections(outcome)[103].reason is Reason.GROUP_NO_FREE_SLOT
    assert store.writes == []
    assert store.singles == {(103, DATE, 1)}


def test_invariants_hold_on_generated_data():
    rng = random.Random(1234)
    tables = {}
    groups = []
    singles = []
    number = 100
    blocks = [TeacherBlock(t, date=DATE, shift=1) for t in (3, 4)]
    for shift in (1, 2):
        for gid in range(4):
            members = []
            used = set()
            for _ in range(rng.randint(1, 4)):
                number += 1
                students = set(rng.sample([s for s in range(30) if s not in used], 2))
                used |= students
                tables[number] = table(number, students, {rng.randint(1, 6)})
                members.append(number)
            groups.append(Group(len(groups) + 1, DATE, shift, 7, members + [0] * (4 - len(members))))
        for _ in range(6):
            number += 1
            tables[number] = table(number, set(rng.sample(range(30), 2)), {rng.randint(1, 6)})
            singles.append(Single(number, DATE, shift, 7))

    outcome, store, state = run(groups, singles, tables, blocks)
    is_blocked = build_availability_index(blocks)

    for group in state.values():
        positions = store.rows[group.group_id]
        members = [n for n in positions if n]
        assert len(members) <= 4
        assert positions[:len(members)] == members
        seen = set()
        for n in members:
            assert not (seen & tables[n].student_ids)
            seen |= tables[n].student_ids
    for move in outcome.movements:
        group = state[move.group_id]
        assert not any(is_blocked(t, group.date, group.shift) for t in tables[move.table_number].teacher_ids)
    assert len(outcome.movements) + len(outcome.unplaced) == len(singles)
