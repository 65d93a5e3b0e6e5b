"""Partition groups and singles into ``(date, shift, area)`` buckets."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .api import Group, Single, SlotKey, validate_filters

T = TypeVar("T", Group, Single)


def filter_by_slot(entries: Iterable[T], date: Optional[str] = None, shift: Optional[int] = None) -> List[T]:
    """Drop entries not matching the optional date/shift filters."""

    out = []
    for entry in entries:
        if date is not None and entry.date != date:
            continue
        if shift is not None and entry.shift != shift:
            continue
        out.append(entry)
    return out


def index_by_slot(entries: Iterable[T]) -> Dict[SlotKey, List[T]]:
    """Bucket ``entries`` by slot key keeping first-seen order inside each bucket."""

    index: Dict[SlotKey, List[T]] = {}
    for entry in entries:
        index.setdefault(entry.slot, []).append(entry)
    return index


def slot_sort_key(key: SlotKey):
    return (key.date, key.shift, key.area_id if key.area_id is not None else -1)


def ordered_slots(keys: Iterable[SlotKey]) -> List[SlotKey]:
    return sorted(keys, key=slot_sort_key)


def build_slot_indexes(
    groups: Sequence[Group],
    singles: Sequence[Single],
    date=None,
    shift=None,
) -> Tuple[Dict[SlotKey, List[Group]], Dict[SlotKey, List[Single]]]:
    """Validate the filters, then index ``groups`` and ``singles`` by slot."""

    date, shift = validate_filters(date, shift)
    groups_by_slot = index_by_slot(filter_by_slot(groups, date, shift))
    singles_by_slot = index_by_slot(filter_by_slot(singles, date, shift))
    return groups_by_slot, singles_by_slot
