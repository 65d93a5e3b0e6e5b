"""Teacher availability lookups built from unavailability blocks."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Set, Tuple

from .api import TeacherBlock

BlockedPredicate = Callable[[int, str, int], bool]


def build_availability_index(blocks: Iterable[TeacherBlock]) -> BlockedPredicate:
    """Return ``is_blocked(teacher_id, date, shift)`` for the given blocks.

    A block matches when:

    * only ``shift`` is set and the shift is equal (any date),
    * only ``date`` is set and the date is equal (any shift),
    * both are set and both are equal.

    Blocks with neither field set are ignored.
    """

    by_shift: Dict[int, Set[int]] = {}
    by_day: Dict[int, Set[str]] = {}
    exact: Set[Tuple[int, str, int]] = set()

    for block in blocks:
        date = block.date or None
        shift = int(block.shift) if block.shift is not None else None
        teacher = int(block.teacher_id)
        if shift is not None and date is None:
            by_shift.setdefault(teacher, set()).add(shift)
        elif shift is None and date is not None:
            by_day.setdefault(teacher, set()).add(date)
        elif shift is not None and date is not None:
            exact.add((teacher, date, shift))

    def is_blocked(teacher_id: int, date: str, shift: int) -> bool:
        teacher_id = int(teacher_id)
        shift = int(shift)
        if shift in by_shift.get(teacher_id, ()):
            return True
        if date in by_day.get(teacher_id, ()):
            return True
        return (teacher_id, date, shift) in exact

    return is_blocked
