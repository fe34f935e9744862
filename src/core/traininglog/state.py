"""
Application state container.

One AppState instance holds everything the views read: who is logged
in, the selected day and month, cached records and memos, and the
coach's selection and filters. StateStore is the only way to change
it. Every change is published to subscribers with the set of fields
that changed, so the render layer follows state without each caller
having to remember to redraw.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Any, Callable, Optional

from .models import (
    CalendarMarks,
    CalendarSelection,
    CoachMemo,
    Notice,
    PinnedMemo,
    Session,
    TrainingRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class CoachFilters:
    """Which subsets of student records the coach is looking at."""
    pain: bool = False
    pinned_memo: bool = True
    records: bool = False
    exercise: str = ""


@dataclass
class AppState:
    session: Optional[Session] = None
    selected_date: Optional[str] = field(default_factory=lambda: date.today().isoformat())
    calendar: CalendarSelection = field(default_factory=lambda: CalendarSelection.for_day(date.today()))
    calendar_marks: CalendarMarks = field(default_factory=CalendarMarks)

    # Student view
    records: list[TrainingRecord] = field(default_factory=list)
    pinned_exercises: list[PinnedMemo] = field(default_factory=list)
    coach_pinned_memos: list[CoachMemo] = field(default_factory=list)

    # Coach view
    all_students: list[str] = field(default_factory=list)
    selected_students: list[str] = field(default_factory=list)
    coach_records: dict[str, list[TrainingRecord]] = field(default_factory=dict)
    student_memos: dict[str, list[PinnedMemo]] = field(default_factory=dict)
    coach_memos_by_student: dict[str, list[CoachMemo]] = field(default_factory=dict)
    filters: CoachFilters = field(default_factory=CoachFilters)

    # Shared
    exercises: list[dict[str, Any]] = field(default_factory=list)
    notice: Optional[Notice] = None

    @property
    def current_user(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    @property
    def is_coach(self) -> bool:
        return bool(self.session and self.session.is_coach)


StateListener = Callable[[AppState, frozenset[str]], None]

_FIELD_NAMES = frozenset(f.name for f in fields(AppState))


class StateStore:
    """
    Owner of the AppState.

    Readers use .state. Writers call update(); listeners registered
    with subscribe() are then called with the new state and the names
    of the fields that actually changed.
    """

    def __init__(self, initial: Optional[AppState] = None) -> None:
        self._state = initial or AppState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def update(self, **changes: Any) -> frozenset[str]:
        """
        Replace the given fields and notify listeners.

        Returns the names of the fields whose value changed. Unknown
        names raise AttributeError before anything is applied.
        """
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise AttributeError(f"AppState has no field(s): {', '.join(sorted(unknown))}")

        changed = frozenset(
            name for name, value in changes.items()
            if getattr(self._state, name) != value
        )
        if not changed:
            return changed

        self._state = replace(self._state, **{name: changes[name] for name in changed})
        self._notify(changed)
        return changed

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; the returned callable removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset_session(self) -> None:
        """Drop everything tied to the logged-in user."""
        defaults = AppState()
        self.update(**{
            f.name: getattr(defaults, f.name)
            for f in fields(AppState)
            if f.name != "exercises"
        })

    def _notify(self, changed: frozenset[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, changed)
            except Exception as e:
                logger.error(
                    "State listener failed",
                    extra={"changed": sorted(changed), "error": str(e)},
                    exc_info=e,
                )
