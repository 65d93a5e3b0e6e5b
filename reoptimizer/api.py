"""Public types and entry points for the exam table reoptimizer.

The reoptimizer takes exam tables that were left ungrouped ("singles") and
tries to merge each one into an existing group of up to four tables sharing
the same date, shift and subject area.  The building blocks live in sibling
modules; this module holds the records they exchange and the helpers used by
the web layer and command line tools.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, NamedTuple, Optional, Tuple

GROUP_CAPACITY = 4
SHIFTS = (1, 2)
EMPTY_POSITION = 0


class ValidationError(ValueError):
    """Raised when request parameters are rejected before any processing."""


class Reason(str, Enum):
    """Why a single could not be merged into a group."""

    GROUP_FULL = "group_full"
    AREA_MISMATCH = "area_mismatch"
    STUDENT_CONFLICT = "student_conflict"
    TEACHER_UNAVAILABLE = "teacher_unavailable"
    NO_GROUPS_IN_SLOT = "no_groups_in_slot"
    AREA_INCONSISTENT = "area_inconsistent"
    NO_COMPATIBLE_GROUP = "no_compatible_group"
    GROUP_NO_FREE_SLOT = "group_no_free_slot"
    GROUP_MISSING = "group_missing"


class Action(str, Enum):
    """Tags attached to every movement in the report."""

    MERGED = "agregado_a_grupo"
    SIMULATED_MERGE = "simular_agregar_a_grupo"
    ALREADY_IN_GROUP = "ya_estaba_en_grupo_borrar_single"
    RELOCATED = "reubicado_y_agregado_a_grupo"
    SIMULATED_RELOCATION = "simular_reubicar_y_agregar_a_grupo"
    DONOR_REGROUPED = "rearmado_con_donante"
    SIMULATED_DONOR_REGROUP = "simular_rearmado_con_donante"


class SlotKey(NamedTuple):
    """Composite key used to partition groups and singles."""

    date: str
    shift: int
    area_id: Optional[int]


@dataclass(frozen=True)
class ExamTable:
    """A numbered examination unit with its students and teachers."""

    table_number: int
    area_id: Optional[int]
    student_ids: FrozenSet[int] = frozenset()
    teacher_ids: FrozenSet[int] = frozenset()
    date: Optional[str] = None
    shift: Optional[int] = None


@dataclass(frozen=True)
class TeacherBlock:
    """One teacher's stated unavailability.

    ``date`` and ``shift`` act as wildcards when missing: a block with only a
    shift covers that shift on every date, a block with only a date covers
    the whole day.
    """

    teacher_id: int
    date: Optional[str] = None
    shift: Optional[int] = None


@dataclass(frozen=True)
class Single:
    """An exam table that is not part of any group yet."""

    table_number: int
    date: str
    shift: int
    area_id: Optional[int]

    @property
    def slot(self) -> SlotKey:
        return SlotKey(self.date, self.shift, self.area_id)


@dataclass
class Group:
    """A container of up to four tables addressed by ordinal position."""

    group_id: int
    date: str
    shift: int
    area_id: Optional[int]
    positions: List[int] = field(default_factory=lambda: [EMPTY_POSITION] * GROUP_CAPACITY)

    @property
    def slot(self) -> SlotKey:
        return SlotKey(self.date, self.shift, self.area_id)

    @property
    def members(self) -> List[int]:
        return [n for n in self.positions if n != EMPTY_POSITION]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def is_full(self) -> bool:
        return self.size >= GROUP_CAPACITY


def normalize_positions(values) -> List[int]:
    """Return a four item position list, mapping ``None`` to the empty marker."""

    out = [int(v) if v else EMPTY_POSITION for v in list(values)[:GROUP_CAPACITY]]
    out.extend([EMPTY_POSITION] * (GROUP_CAPACITY - len(out)))
    return out


def first_free_position(positions: List[int]) -> Optional[int]:
    """Index of the first empty position, scanning strictly from 1 to 4."""

    for idx, value in enumerate(positions):
        if value == EMPTY_POSITION:
            return idx
    return None


@dataclass
class Movement:
    """A successful placement recorded in the report."""

    table_number: int
    date: str
    shift: int
    area_id: Optional[int]
    group_id: Optional[int]
    action: Action
    before: Optional[List[int]] = None
    after: Optional[List[int]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "table_number": self.table_number,
            "date": self.date,
            "shift": self.shift,
            "area": self.area_id,
            "group_id": self.group_id,
        }
        if self.before is not None:
            data["before"] = list(self.before)
        if self.after is not None:
            data["after"] = list(self.after)
        data.update(self.extra)
        data["action"] = self.action.value
        return data


@dataclass
class Rejection:
    """A single that stayed unplaced, with the reason it was rejected."""

    table_number: int
    date: str
    shift: int
    area_id: Optional[int]
    reason: Reason
    reasons: Optional[List[Reason]] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "table_number": self.table_number,
            "date": self.date,
            "shift": self.shift,
            "area": self.area_id,
            "reason": self.reason.value,
        }
        if self.reasons is not None:
            data["reasons"] = [r.value for r in self.reasons]
        return data


@dataclass(frozen=True)
class ReoptimizeRequest:
    """Parameters accepted by a reoptimization run."""

    dry_run: bool = False
    date: Optional[str] = None
    shift: Optional[int] = None
    relocate: bool = False
    use_donors: bool = False


@dataclass
class ReoptimizeResult:
    """Summary and detail of a finished run."""

    dry_run: bool
    movements: List[Movement]
    unplaced: List[Rejection]
    journal: List[str] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "dry_run": 1 if self.dry_run else 0,
            "movements": len(self.movements),
            "unplaced_count": len(self.unplaced),
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "detail": {
                "movements": [m.as_dict() for m in self.movements],
                "unplaced": [r.as_dict() for r in self.unplaced],
            },
        }


def validate_date(value: Any) -> str:
    text = str(value)
    try:
        parsed = datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"Invalid date filter '{value}' (expected YYYY-MM-DD).") from None
    if parsed.strftime("%Y-%m-%d") != text:
        raise ValidationError(f"Invalid date filter '{value}' (expected YYYY-MM-DD).")
    return text


def validate_shift(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid shift filter '{value}' (expected 1 or 2).")
    # JSON clients may send 1.0 for 1
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    try:
        shift = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid shift filter '{value}' (expected 1 or 2).") from None
    if shift not in SHIFTS:
        raise ValidationError(f"Invalid shift filter '{value}' (expected 1 or 2).")
    return shift


def validate_filters(date: Any = None, shift: Any = None) -> Tuple[Optional[str], Optional[int]]:
    """Normalize the optional date and shift filters or raise ``ValidationError``."""

    date_out = validate_date(date) if date not in (None, "") else None
    shift_out = validate_shift(shift) if shift not in (None, "") else None
    return date_out, shift_out


def _as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def parse_request(payload: Optional[Mapping[str, Any]]) -> ReoptimizeRequest:
    """Build a :class:`ReoptimizeRequest` from a decoded JSON body.

    ``fecha_mesa`` and ``id_turno`` are accepted as aliases of ``date`` and
    ``shift`` for clients of the older endpoint.
    """

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object.")
    date = payload.get("date", payload.get("fecha_mesa"))
    shift = payload.get("shift", payload.get("id_turno"))
    date, shift = validate_filters(date, shift)
    return ReoptimizeRequest(
        dry_run=_as_flag(payload.get("dry_run", False)),
        date=date,
        shift=shift,
        relocate=_as_flag(payload.get("relocate", False)),
        use_donors=_as_flag(payload.get("use_donors", False)),
    )


def reoptimize(
    store,
    request: Optional[ReoptimizeRequest] = None,
    *,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> ReoptimizeResult:
    """High-level helper running a full reoptimization against ``store``."""

    from .coordinator import run_reoptimization

    return run_reoptimization(store, request, progress_callback=progress_callback)


__all__ = [
    "GROUP_CAPACITY",
    "SHIFTS",
    "EMPTY_POSITION",
    "ValidationError",
    "Reason",
    "Action",
    "SlotKey",
    "ExamTable",
    "TeacherBlock",
    "Single",
    "Group",
    "Movement",
    "Rejection",
    "ReoptimizeRequest",
    "ReoptimizeResult",
    "normalize_positions",
    "first_free_position",
    "validate_filters",
    "parse_request",
    "reoptimize",
]
