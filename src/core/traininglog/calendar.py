"""Monthly calendar for the student view: which days have records or feedback."""

import logging
from datetime import date
from typing import Optional

from .context import TrainingLogContext
from .documents import RECORDS, QueryFilter, StoredDocument
from .models import CalendarMarks, CalendarSelection, record_from_document, validate_iso_day
from .records import RecordsSync
from .subscriptions import CALENDAR_SLOT, ScopedSubscription

logger = logging.getLogger(__name__)


def marks_from_snapshot(docs: list[StoredDocument]) -> CalendarMarks:
    workout, feedback = set(), set()
    for doc in docs:
        record = record_from_document(doc.id, doc.data)
        if record is None or record.archived:
            continue
        workout.add(record.date)
        if record.has_feedback:
            feedback.add(record.date)
    return CalendarMarks(workout_dates=frozenset(workout), feedback_dates=frozenset(feedback))


class CalendarSync:

    def __init__(self, ctx: TrainingLogContext, records: RecordsSync) -> None:
        self._ctx = ctx
        self._records = records

    async def load_month(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> Optional[ScopedSubscription]:
        """Watch the current user's records for the visible month."""
        user = self._ctx.require_user()
        selection = self._ctx.state.state.calendar
        if year is not None and month is not None:
            selection = CalendarSelection(year=year, month=month, selected_date=selection.selected_date)
            self._ctx.state.update(calendar=selection)

        documents = self._ctx.store_or_none("load_month")
        if documents is None:
            return None

        start, end = selection.month_range()
        registry = self._ctx.subscriptions

        def on_snapshot(docs: list[StoredDocument]) -> None:
            self._ctx.state.update(calendar_marks=marks_from_snapshot(docs))

        sub = registry.acquire(CALENDAR_SLOT)
        sub.handle = documents.watch_query(
            RECORDS,
            [
                QueryFilter("userName", "==", user),
                QueryFilter("date", ">=", start),
                QueryFilter("date", "<=", end),
            ],
            registry.guard(sub, on_snapshot),
        )
        logger.debug("Watching calendar month", extra={"start": start, "end": end})
        return sub

    async def change_month(self, delta: int) -> None:
        selection = self._ctx.state.state.calendar.shift(delta)
        await self.load_month(selection.year, selection.month)

    async def select_date(self, day: str) -> None:
        """Pick a day: the calendar follows it and the day's records are reloaded."""
        validate_iso_day(day)
        picked = date.fromisoformat(day)
        selection = CalendarSelection(year=picked.year, month=picked.month, selected_date=day)
        current = self._ctx.state.state.calendar
        self._ctx.state.update(selected_date=day, calendar=selection)

        month_changed = (current.year, current.month) != (selection.year, selection.month)
        if month_changed or CALENDAR_SLOT not in self._ctx.subscriptions.active_slots():
            await self.load_month()
        await self._records.load_my_records()
