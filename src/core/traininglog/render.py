"""
Render layer: state in, HTML fragments out.

The render_* functions are pure and escape every piece of user text.
Renderer wires them to the StateStore: it subscribes once and pushes a
fresh fragment to the ViewSink whenever a field a view depends on
changes.
"""

import logging
from datetime import date
from html import escape
from typing import Callable, Iterable, Mapping, Optional, Protocol

from .models import (
    CalendarMarks,
    CalendarSelection,
    CoachMemo,
    ExerciseSet,
    PinnedMemo,
    RepsUnit,
    TrainingRecord,
)
from .state import AppState, CoachFilters, StateStore
from .utils import format_date, korean_initial, student_color, student_text_color

logger = logging.getLogger(__name__)

CALENDAR_WEEKDAYS = ["일", "월", "화", "수", "목", "금", "토"]


def format_set(exercise_set: ExerciseSet) -> str:
    """'80kg × 10회', '맨몸 × 12회' or '30초 × 3회'."""
    if exercise_set.is_bodyweight:
        intensity = "맨몸"
    else:
        intensity = f"{exercise_set.intensity_value}{exercise_set.intensity_unit.value}"

    if exercise_set.reps_unit is RepsUnit.SECONDS_X_REPS:
        reps = f"{exercise_set.reps_value}초 × {exercise_set.reps_count or '?'}회"
    else:
        reps = f"{exercise_set.reps_value}{exercise_set.reps_unit.value}"
    return f"{intensity} × {reps}"


def _time_label(record: TrainingRecord) -> str:
    if record.timestamp is None:
        return "방금 전"
    return record.timestamp.astimezone().strftime("%H:%M")


def _sets_html(record: TrainingRecord) -> str:
    return "".join(
        f'<div class="set">{s.index + 1}세트: {escape(format_set(s))}</div>'
        for s in record.sets
    )


def _pain_badge(pain: bool) -> str:
    return '<span class="badge pain">⚠️ 통증</span>' if pain else ""


def render_records(records: list[TrainingRecord]) -> str:
    if not records:
        return '<p class="empty">이 날짜에는 기록이 없습니다.</p>'

    parts = []
    for record in records:
        memo = f'<p class="memo">📝 {escape(record.memo)}</p>' if record.memo else ""
        feedback = (
            f'<p class="feedback">💬 {escape(record.feedback)}</p>' if record.has_feedback else ""
        )
        parts.append(
            f'<div class="record" data-record-id="{escape(record.id or "")}">'
            f'<div class="record-header"><span class="exercise">{escape(record.exercise)}</span>'
            f'{_pain_badge(record.pain)}<span class="time">{_time_label(record)}</span></div>'
            f"{_sets_html(record)}{memo}{feedback}</div>"
        )
    return "".join(parts)


def render_calendar(
    selection: CalendarSelection,
    marks: CalendarMarks,
    selected_date: Optional[str] = None,
    today: Optional[date] = None,
) -> str:
    today_iso = (today or date.today()).isoformat()
    cells = [f'<div class="weekday">{d}</div>' for d in CALENDAR_WEEKDAYS]
    cells.extend('<div class="blank"></div>' for _ in range(selection.leading_blank_days))

    for day in range(1, selection.days_in_month + 1):
        iso = selection.day_iso(day)
        classes = ["calendar-day"]
        if iso == today_iso:
            classes.append("today")
        if iso == selected_date:
            classes.append("selected-date")
        if iso in marks.feedback_dates:
            classes.append("has-feedback")
        elif iso in marks.workout_dates:
            classes.append("has-workout")
        cells.append(f'<div class="{" ".join(classes)}" data-date="{iso}">{day}</div>')

    return (
        f'<div class="calendar-title">{selection.year}년 {selection.month}월</div>'
        f'<div class="calendar-grid">{"".join(cells)}</div>'
    )


def render_pinned_memos(coach_memos: list[CoachMemo], pinned: list[PinnedMemo]) -> str:
    """Coach memos first, then the student's own workout memos."""
    if not coach_memos and not pinned:
        return ""

    html = ['<div class="pinned-memos">']
    if coach_memos:
        html.append(f'<h3>👨‍🏫 코치 운동 메모 <span class="count">{len(coach_memos)}</span></h3>')
        for memo in coach_memos:
            html.append(
                f'<div class="coach-memo {escape(memo.kind)}" data-memo-id="{escape(memo.id)}">'
                f'<span class="title">{escape(memo.exercise)}</span>'
                f'<div class="text">{escape(memo.text)}</div></div>'
            )
    if pinned:
        html.append(f"<h3>📌 운동 메모 ({len(pinned)}개)</h3>")
        for index, memo in enumerate(pinned):
            text = (
                f'<div class="text">{escape(memo.text)}</div>' if memo.text
                else '<div class="text empty">메모 없음</div>'
            )
            comment = (
                f'<div class="coach-comment">💬 {escape(memo.coach_comment)}</div>'
                if memo.coach_comment else ""
            )
            html.append(
                f'<div class="workout-memo" data-index="{index}">'
                f'<span class="title">{escape(memo.exercise)}</span>{_pain_badge(memo.pain)}'
                f"{text}{comment}</div>"
            )
    html.append("</div>")
    return "".join(html)


def render_coach_records(coach_records: Mapping[str, list[TrainingRecord]]) -> str:
    if not coach_records:
        return '<p class="empty">조건에 맞는 기록이 없습니다.</p>'

    parts = []
    for owner, records in coach_records.items():
        style = f"background-color: {student_color(owner)}"
        for record in records:
            feedback = escape(record.feedback) if record.has_feedback else ""
            parts.append(
                f'<div class="coach-record" style="{style}" data-record-id="{escape(record.id or "")}">'
                f'<span class="student" style="color: {student_text_color(owner)}">{escape(owner)}</span>'
                f'<span class="date">{escape(format_date(record.date))}</span>'
                f'<span class="exercise">{escape(record.exercise)}</span>{_pain_badge(record.pain)}'
                f"{_sets_html(record)}"
                f'<textarea class="feedback" data-record-id="{escape(record.id or "")}">{feedback}</textarea>'
                "</div>"
            )
    return "".join(parts)


def render_student_list(all_students: list[str], selected: list[str]) -> str:
    """Students grouped under their leading Hangul consonant."""
    if not all_students:
        return '<p class="empty">등록된 수강생이 없습니다.</p>'

    groups: dict[str, list[str]] = {}
    for student in all_students:
        groups.setdefault(korean_initial(student), []).append(student)

    all_selected = len(selected) == len(all_students)
    label = "✓ 전체 선택됨" if all_selected else "👥 전체 선택"
    html = [f'<button class="select-all">{label} ({len(all_students)}명)</button>']
    chosen = set(selected)
    for initial in sorted(groups):
        badges = "".join(
            f'<span class="student-badge{" active" if s in chosen else ""}" data-student="{escape(s)}">'
            f'{"✓ " if s in chosen else ""}{escape(s)}</span>'
            for s in groups[initial]
        )
        html.append(f'<div class="initial-group"><span class="initial">{initial}</span>{badges}</div>')
    return "".join(html)


def render_coach_memo_board(
    selected: list[str],
    student_memos: Mapping[str, list[PinnedMemo]],
    coach_memos: Mapping[str, list[CoachMemo]],
    filters: CoachFilters,
) -> str:
    """Per selected student: coach memos and messages, then their workout memos."""
    if not selected or not filters.pinned_memo:
        return ""

    html = []
    for student in selected:
        theirs = student_memos.get(student, [])
        ours = coach_memos.get(student, [])
        if filters.exercise:
            theirs = [m for m in theirs if m.exercise == filters.exercise]
            ours = [m for m in ours if m.exercise == filters.exercise]
        if filters.pain:
            theirs = [m for m in theirs if m.pain]

        items = [
            f'<div class="coach-memo {escape(m.kind)}" data-memo-id="{escape(m.id)}">'
            f'<span class="title">{escape(m.exercise)}</span><div class="text">{escape(m.text)}</div></div>'
            for m in ours
        ]
        items.extend(
            f'<div class="workout-memo" data-index="{i}"><span class="title">{escape(m.exercise)}</span>'
            f'{_pain_badge(m.pain)}<div class="text">{escape(m.text)}</div>'
            f'<textarea class="coach-comment">{escape(m.coach_comment)}</textarea></div>'
            for i, m in enumerate(theirs)
        )
        if not items:
            items.append('<p class="empty">메모가 없습니다.</p>')
        html.append(
            f'<section class="student-memos" style="background-color: {student_color(student)}" '
            f'data-student="{escape(student)}"><h3>{escape(student)}</h3>{"".join(items)}</section>'
        )
    return "".join(html)


# ---------------------------------------------------------------------------
# Automatic re-rendering
# ---------------------------------------------------------------------------

class ViewSink(Protocol):
    """Where rendered fragments go, e.g. a DOM bridge or a test recorder."""

    def show(self, view: str, html: str) -> None:
        ...


ViewRenderer = Callable[[AppState], str]

VIEWS: dict[str, tuple[frozenset[str], ViewRenderer]] = {
    "records": (
        frozenset({"records"}),
        lambda s: render_records(s.records),
    ),
    "calendar": (
        frozenset({"calendar", "calendar_marks", "selected_date"}),
        lambda s: render_calendar(s.calendar, s.calendar_marks, s.selected_date),
    ),
    "pinned_memos": (
        frozenset({"pinned_exercises", "coach_pinned_memos"}),
        lambda s: render_pinned_memos(s.coach_pinned_memos, s.pinned_exercises),
    ),
    "coach_records": (
        frozenset({"coach_records"}),
        lambda s: render_coach_records(s.coach_records),
    ),
    "student_list": (
        frozenset({"all_students", "selected_students"}),
        lambda s: render_student_list(s.all_students, s.selected_students),
    ),
    "coach_memo_board": (
        frozenset({"selected_students", "student_memos", "coach_memos_by_student", "filters"}),
        lambda s: render_coach_memo_board(
            s.selected_students, s.student_memos, s.coach_memos_by_student, s.filters
        ),
    ),
}


class Renderer:
    """Re-render views when the state fields they read change."""

    def __init__(self, store: StateStore, sink: ViewSink, views: Optional[Iterable[str]] = None) -> None:
        self._store = store
        self._sink = sink
        self._views = list(views) if views is not None else list(VIEWS)
        unknown = set(self._views) - set(VIEWS)
        if unknown:
            raise ValueError(f"Unknown views: {', '.join(sorted(unknown))}")
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_change)
        self.render_all()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def render_all(self) -> None:
        for view in self._views:
            self._render(view, self._store.state)

    def _on_change(self, state: AppState, changed: frozenset[str]) -> None:
        for view in self._views:
            if VIEWS[view][0] & changed:
                self._render(view, state)

    def _render(self, view: str, state: AppState) -> None:
        self._sink.show(view, VIEWS[view][1](state))
