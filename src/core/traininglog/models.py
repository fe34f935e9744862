"""
Domain models for the training log.

These models represent what students and coaches work with: sessions,
training records made of sets, pinned workout memos and coach memos.
They have no dependency on Firestore or on how records are rendered.
Translation to and from stored documents lives here too, because the
document shape is part of the contract with existing data.
"""

import calendar
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import uuid4

from src.core.errors import ParameterValidationError

logger = logging.getLogger(__name__)


class Role(Enum):
    """Who is logged in."""
    STUDENT = "student"
    COACH = "coach"


class IntensityUnit(Enum):
    """How the load of a set is measured."""
    KG = "kg"
    HEIGHT = "높이"
    BODYWEIGHT = "맨몸"


class RepsUnit(Enum):
    """How the volume of a set is measured."""
    REPS = "회"
    SECONDS = "초"
    SECONDS_X_REPS = "초 x 회"  # hold for N seconds, M times


def validate_iso_day(value: str) -> str:
    """Return value if it is a YYYY-MM-DD day string, else raise."""
    try:
        date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ParameterValidationError(f"Invalid date: {value!r}")
    return value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_text(value: Any) -> str:
    """Stored set fields are strings, but older clients wrote numbers."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return ""
    return str(value).strip()


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExerciseSet:
    """
    One set inside a training record.

    Frozen because a set is a value: editing a set means replacing it.
    Construct through parse_exercise_set() when the input comes from
    a form or a stored document.
    """
    index: int
    intensity_value: str = ""
    intensity_unit: IntensityUnit = IntensityUnit.KG
    reps_value: str = ""
    reps_unit: RepsUnit = RepsUnit.REPS
    reps_count: Optional[str] = None

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ParameterValidationError("Set index cannot be negative")
        if not self.reps_value:
            raise ParameterValidationError(f"Set {self.index + 1}: reps value is required")
        if self.intensity_unit is not IntensityUnit.BODYWEIGHT and not self.intensity_value:
            raise ParameterValidationError(f"Set {self.index + 1}: intensity value is required")

    @property
    def is_bodyweight(self) -> bool:
        return self.intensity_unit is IntensityUnit.BODYWEIGHT

    def to_document(self) -> dict[str, Any]:
        reps: dict[str, Any] = {"value": self.reps_value, "unit": self.reps_unit.value}
        if self.reps_count is not None:
            reps["count"] = self.reps_count
        return {
            "intensity": {
                "value": IntensityUnit.BODYWEIGHT.value if self.is_bodyweight else self.intensity_value,
                "unit": self.intensity_unit.value,
            },
            "reps": reps,
        }


def _parse_unit(enum_cls, raw: Any, default):
    if raw in (None, ""):
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        raise ParameterValidationError(f"Unknown unit: {raw!r}")


def is_blank_set(raw: Any) -> bool:
    """True for the empty placeholder row a form starts with."""
    if not isinstance(raw, Mapping):
        return False
    intensity = raw.get("intensity")
    reps = raw.get("reps")
    values = [
        raw.get("weight"),
        intensity.get("value") if isinstance(intensity, Mapping) else None,
        reps.get("value") if isinstance(reps, Mapping) else reps,
    ]
    return not any(_as_text(v) for v in values)


def parse_exercise_set(raw: Any, index: int) -> ExerciseSet:
    """
    Build a validated ExerciseSet from a form row or stored document.

    Accepts the current shape
        {"intensity": {"value": "80", "unit": "kg"},
         "reps": {"value": "10", "unit": "회", "count": "3"}}
    and the legacy shape {"weight": "80", "reps": "10"}.
    Anything else raises ParameterValidationError instead of being
    silently defaulted.
    """
    if not isinstance(raw, Mapping):
        raise ParameterValidationError(f"Set {index + 1}: expected an object, got {type(raw).__name__}")

    intensity_unit = IntensityUnit.KG
    intensity_value = ""
    intensity = raw.get("intensity")
    if isinstance(intensity, Mapping):
        intensity_unit = _parse_unit(IntensityUnit, intensity.get("unit"), IntensityUnit.KG)
        intensity_value = _as_text(intensity.get("value"))
    elif intensity is not None:
        raise ParameterValidationError(f"Set {index + 1}: malformed intensity")
    elif "weight" in raw:
        intensity_value = _as_text(raw.get("weight"))

    reps_unit = RepsUnit.REPS
    reps_count = None
    reps = raw.get("reps")
    if isinstance(reps, Mapping):
        reps_unit = _parse_unit(RepsUnit, reps.get("unit"), RepsUnit.REPS)
        reps_value = _as_text(reps.get("value"))
        if reps.get("count") not in (None, ""):
            reps_count = _as_text(reps.get("count"))
    elif isinstance(reps, (str, int, float)) and not isinstance(reps, bool):
        reps_value = _as_text(reps)
    else:
        raise ParameterValidationError(f"Set {index + 1}: malformed reps")

    if intensity_unit is IntensityUnit.BODYWEIGHT:
        intensity_value = IntensityUnit.BODYWEIGHT.value

    return ExerciseSet(
        index=index,
        intensity_value=intensity_value,
        intensity_unit=intensity_unit,
        reps_value=reps_value,
        reps_unit=reps_unit,
        reps_count=reps_count,
    )


def parse_exercise_sets(raws: list[Any], skip_blank: bool = True) -> list[ExerciseSet]:
    """
    Parse a list of set rows, renumbering after blank rows are skipped.

    Raises ParameterValidationError if no set remains.
    """
    rows = [raw for raw in raws if not (skip_blank and is_blank_set(raw))]
    sets = [parse_exercise_set(raw, i) for i, raw in enumerate(rows)]
    if not sets:
        raise ParameterValidationError("At least one set with intensity and reps is required")
    return sets


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Session:
    """The logged-in identity. Lives in memory only."""
    user_id: str
    role: Role = Role.STUDENT
    password: str = ""
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.user_id.strip():
            raise ParameterValidationError("User id cannot be empty")
        if not self.display_name:
            object.__setattr__(self, "display_name", self.user_id)

    @property
    def is_coach(self) -> bool:
        return self.role is Role.COACH


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class TrainingRecord:
    """
    One exercise logged by a student on a given day.

    Owned by exactly one student. Records are archived, never deleted.
    """
    owner_id: str
    date: str
    exercise: str
    sets: list[ExerciseSet] = field(default_factory=list)
    memo: str = ""
    pinned: bool = False
    pain: bool = False
    feedback: str = ""
    order: Optional[int] = None
    timestamp: Optional[datetime] = None
    archived: bool = False
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.owner_id:
            raise ParameterValidationError("Record owner is required")
        validate_iso_day(self.date)

    @property
    def has_feedback(self) -> bool:
        return bool(self.feedback and self.feedback.strip())

    def sort_key(self) -> tuple:
        """Explicit order first, then creation time for unordered legacy records."""
        ts = self.timestamp.timestamp() if self.timestamp else 0.0
        if self.order is not None:
            return (0, self.order, ts)
        return (1, 0, ts)

    def to_document(self) -> dict[str, Any]:
        return {
            "userName": self.owner_id,
            "date": self.date,
            "exercise": self.exercise,
            "sets": [s.to_document() for s in self.sets],
            "memo": self.memo,
            "pinned": self.pinned,
            "pain": self.pain,
            "feedback": self.feedback,
            "order": self.order,
            "archived": self.archived,
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "TrainingRecord":
        return cls(
            id=doc_id,
            owner_id=data.get("userName", ""),
            date=data.get("date", ""),
            exercise=data.get("exercise", ""),
            sets=_sets_from_document(doc_id, data),
            memo=data.get("memo") or "",
            pinned=bool(data.get("pinned", False)),
            pain=bool(data.get("pain", False)),
            feedback=data.get("feedback") or "",
            order=data.get("order"),
            timestamp=data.get("timestamp"),
            archived=bool(data.get("archived", False)),
        )


def _sets_from_document(doc_id: str, data: Mapping[str, Any]) -> list[ExerciseSet]:
    """Stored sets, including the pre-sets format {weight, reps, sets: <count>}."""
    raw_sets = data.get("sets")
    if isinstance(raw_sets, int) and not isinstance(raw_sets, bool):
        raw_sets = [{"weight": data.get("weight"), "reps": data.get("reps")}] * raw_sets
    if not isinstance(raw_sets, list):
        return []

    sets = []
    for raw in raw_sets:
        try:
            sets.append(parse_exercise_set(raw, len(sets)))
        except ParameterValidationError as e:
            logger.warning(
                "Skipping malformed stored set",
                extra={"record_id": doc_id, "error": str(e)}
            )
    return sets


def record_from_document(doc_id: str, data: Mapping[str, Any]) -> Optional[TrainingRecord]:
    """Like TrainingRecord.from_document but logs and skips unreadable documents."""
    try:
        return TrainingRecord.from_document(doc_id, data)
    except ParameterValidationError as e:
        logger.warning(
            "Skipping malformed record document",
            extra={"record_id": doc_id, "error": str(e)}
        )
        return None


# ---------------------------------------------------------------------------
# Memos
# ---------------------------------------------------------------------------

@dataclass
class PinnedMemo:
    """
    A student's workout memo for one exercise.

    At most one per exercise: saving again overwrites the text.
    Coaches see these in aggregate and may attach a comment.
    """
    exercise: str
    text: str = ""
    owner_id: str = ""
    pain: bool = False
    coach_comment: str = ""
    record_date: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "exercise": self.exercise,
            "memo": self.text,
            "userName": self.owner_id,
            "pain": self.pain,
        }
        if self.coach_comment:
            doc["coachComment"] = self.coach_comment
        if self.record_date:
            doc["recordDate"] = self.record_date
        return doc

    @classmethod
    def from_document(cls, data: Mapping[str, Any], owner_id: str = "") -> "PinnedMemo":
        return cls(
            exercise=data.get("exercise", ""),
            text=data.get("memo") or "",
            owner_id=data.get("userName") or owner_id,
            pain=bool(data.get("pain", False)),
            coach_comment=data.get("coachComment") or "",
            record_date=data.get("recordDate"),
        )

    def matches_exercise(self, exercise: str) -> bool:
        return self.exercise.strip().lower() == exercise.strip().lower()


@dataclass
class CoachMemo:
    """A memo or personal message a coach pins for one student."""
    exercise: str
    text: str
    pinned_by: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=_now_iso)
    updated_at: Optional[str] = None
    kind: str = "memo"  # "memo" or "message"

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "exercise": self.exercise,
            "memo": self.text,
            "pinnedBy": self.pinned_by,
            "createdAt": self.created_at,
        }
        if self.updated_at:
            doc["updatedAt"] = self.updated_at
        if self.kind != "memo":
            doc["type"] = self.kind
        return doc

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "CoachMemo":
        return cls(
            # legacy memos have no id; exercise doubles as the key for those
            id=data.get("id") or "",
            exercise=data.get("exercise", ""),
            text=data.get("memo") or "",
            pinned_by=data.get("pinnedBy", ""),
            created_at=data.get("createdAt") or "",
            updated_at=data.get("updatedAt"),
            kind=data.get("type", "memo"),
        )

    def touch(self) -> None:
        self.updated_at = _now_iso()


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalendarSelection:
    """The visible month and the picked day. Transient UI cursor."""
    year: int
    month: int  # 1-12
    selected_date: Optional[str] = None

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ParameterValidationError("Month must be between 1 and 12")

    @classmethod
    def for_day(cls, day: date) -> "CalendarSelection":
        return cls(year=day.year, month=day.month, selected_date=day.isoformat())

    def shift(self, delta: int) -> "CalendarSelection":
        """Move the visible month, wrapping across years."""
        zero_based = self.year * 12 + (self.month - 1) + delta
        return replace(self, year=zero_based // 12, month=zero_based % 12 + 1)

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    @property
    def leading_blank_days(self) -> int:
        """Empty cells before day 1 in a Sunday-first week grid."""
        return (date(self.year, self.month, 1).weekday() + 1) % 7

    def month_range(self) -> tuple[str, str]:
        first = date(self.year, self.month, 1)
        last = date(self.year, self.month, self.days_in_month)
        return first.isoformat(), last.isoformat()

    def day_iso(self, day: int) -> str:
        return date(self.year, self.month, day).isoformat()


@dataclass(frozen=True)
class CalendarMarks:
    """Which days of the visible month have records, and which have feedback."""
    workout_dates: frozenset[str] = frozenset()
    feedback_dates: frozenset[str] = frozenset()


# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Notice:
    """The shared announcement students see as a popup."""
    title: str = ""
    content: str = ""
    is_visible: bool = False
    start_date: str = ""
    end_date: str = ""

    def is_active_on(self, day: str) -> bool:
        if not self.is_visible:
            return False
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Notice":
        return cls(
            title=data.get("title", ""),
            content=data.get("content", ""),
            is_visible=bool(data.get("isVisible", False)),
            start_date=data.get("startDate", ""),
            end_date=data.get("endDate", ""),
        )
