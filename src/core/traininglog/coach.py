"""
Coach scope: a view across several students' records and memos.

The coach picks students and filters; each change schedules a
debounced reload so clicking through a list of names issues one query
instead of one per click. Selection and filter toggles are remembered
in local storage between visits.
"""

import logging
from dataclasses import replace
from typing import Optional

from src.core.errors import ParameterValidationError

from .context import TrainingLogContext
from .documents import (
    COACH_PINNED_MEMOS,
    PINNED_MEMOS,
    RECORDS,
    SERVER_TIMESTAMP,
    USERS,
    BatchWrite,
    QueryFilter,
    StoredDocument,
)
from .models import CoachMemo, PinnedMemo, TrainingRecord, record_from_document, validate_iso_day
from .records import coach_memos_from_document, pinned_memos_from_document
from .state import CoachFilters
from .subscriptions import ALL_PINNED_MEMOS_SLOT, RECORDS_SLOT, ScopedSubscription
from .utils import Debouncer, read_json, write_json

logger = logging.getLogger(__name__)

SELECTED_STUDENTS_KEY = "coachSelectedStudents"
PAIN_FILTER_KEY = "coachPainFilter"
PINNED_MEMO_FILTER_KEY = "coachPinnedMemoFilter"

RECORD_LIMIT = 100
DEFAULT_MESSAGE_TITLE = "알림"


def group_by_owner(
    docs: list[StoredDocument],
    selected: list[str],
    pinned_by_owner: Optional[dict[str, list[PinnedMemo]]] = None,
) -> dict[str, list[TrainingRecord]]:
    """
    Group live records by owner, each owner's records oldest first.

    An empty selection keeps every owner. When pinned_by_owner is
    given, only exercises the owner has a workout memo for are kept.
    """
    wanted = set(selected)
    grouped: dict[str, list[TrainingRecord]] = {}
    for doc in docs:
        record = record_from_document(doc.id, doc.data)
        if record is None or record.archived:
            continue
        if wanted and record.owner_id not in wanted:
            continue
        if pinned_by_owner is not None:
            memos = pinned_by_owner.get(record.owner_id) or []
            if not any(m.matches_exercise(record.exercise) for m in memos):
                continue
        grouped.setdefault(record.owner_id, []).append(record)

    for records in grouped.values():
        records.sort(key=lambda r: r.timestamp.timestamp() if r.timestamp else 0.0)
    return {owner: grouped[owner] for owner in sorted(grouped)}


def find_coach_memo(memos: list[CoachMemo], memo_id: str) -> Optional[int]:
    """Index by id; legacy memos without an id are matched by exercise."""
    for i, memo in enumerate(memos):
        if memo_id and memo.id == memo_id:
            return i
    for i, memo in enumerate(memos):
        if memo.exercise == memo_id:
            return i
    return None


class CoachSync:

    def __init__(self, ctx: TrainingLogContext) -> None:
        self._ctx = ctx
        self._debouncer = Debouncer(self.load_all_records, delay=ctx.debounce_seconds)

    @property
    def debouncer(self) -> Debouncer:
        return self._debouncer

    # -----------------------------------------------------------------------
    # Students and selection
    # -----------------------------------------------------------------------

    async def load_student_list(self) -> list[str]:
        """Load every non-coach user and restore the saved selection and filters."""
        me = self._ctx.require_user()
        documents = self._ctx.store_or_none("load_student_list")
        if documents is None:
            return []

        users = await documents.query(USERS)
        students = sorted(
            doc.id for doc in users
            if doc.id and doc.id != me and not doc.data.get("isCoach", False)
        )

        state = self._ctx.state.state
        selected = state.selected_students
        if not selected:
            saved = read_json(self._ctx.local, SELECTED_STUDENTS_KEY, [])
            if isinstance(saved, list):
                selected = [s for s in saved if s in students]

        local = self._ctx.local
        filters = replace(
            state.filters,
            pain=state.filters.pain or local.get_item(PAIN_FILTER_KEY) == "true",
            pinned_memo=local.get_item(PINNED_MEMO_FILTER_KEY) in (None, "true"),
        )
        self._ctx.state.update(all_students=students, selected_students=selected, filters=filters)
        logger.info("Loaded student list", extra={"students": len(students), "selected": len(selected)})

        if selected and filters.records:
            self._debouncer.trigger()
        return students

    def toggle_student(self, student: str) -> None:
        selected = list(self._ctx.state.state.selected_students)
        if student in selected:
            selected.remove(student)
        else:
            selected.append(student)
        self._set_selection(selected)

    def toggle_select_all(self) -> None:
        state = self._ctx.state.state
        if len(state.selected_students) == len(state.all_students):
            self._set_selection([])
        else:
            self._set_selection(list(state.all_students))

    def clear_selection(self) -> None:
        self._set_selection([])

    def _set_selection(self, selected: list[str]) -> None:
        write_json(self._ctx.local, SELECTED_STUDENTS_KEY, selected)
        self._ctx.state.update(selected_students=selected)
        self._schedule_reload()

    # -----------------------------------------------------------------------
    # Filters
    # -----------------------------------------------------------------------

    def set_date(self, day: str) -> None:
        self._ctx.state.update(selected_date=validate_iso_day(day))
        self._schedule_reload()

    def show_all_dates(self) -> None:
        self._ctx.state.update(selected_date=None)
        self._schedule_reload()

    def set_pain_filter(self, enabled: bool) -> None:
        self._ctx.local.set_item(PAIN_FILTER_KEY, "true" if enabled else "false")
        self._update_filters(pain=enabled)
        self._schedule_reload()

    def set_pinned_memo_filter(self, enabled: bool) -> None:
        self._ctx.local.set_item(PINNED_MEMO_FILTER_KEY, "true" if enabled else "false")
        self._update_filters(pinned_memo=enabled)
        self._schedule_reload()

    def set_exercise_filter(self, exercise: str) -> None:
        self._update_filters(exercise=(exercise or "").strip())
        self._schedule_reload()

    async def set_records_filter(self, enabled: bool) -> None:
        """Show or hide the records list. Hiding also stops the live query."""
        self._update_filters(records=enabled)
        if enabled:
            await self.load_all_records()
        else:
            self._debouncer.cancel()
            self._ctx.subscriptions.release(RECORDS_SLOT)
            self._ctx.state.update(coach_records={})

    def _update_filters(self, **changes) -> CoachFilters:
        filters = replace(self._ctx.state.state.filters, **changes)
        self._ctx.state.update(filters=filters)
        return filters

    def _schedule_reload(self) -> None:
        if self._ctx.state.state.filters.records:
            self._debouncer.trigger()

    # -----------------------------------------------------------------------
    # Live queries
    # -----------------------------------------------------------------------

    async def load_all_records(self) -> Optional[ScopedSubscription]:
        """
        Watch records across students under the current filters.

        Shares the records slot with the student view, so switching
        between them never leaves two listeners writing state.
        """
        documents = self._ctx.store_or_none("load_all_records")
        if documents is None:
            return None

        state = self._ctx.state.state
        filters = state.filters
        query: list[QueryFilter] = []
        order_by = None
        if filters.exercise:
            query.append(QueryFilter("exercise", "==", filters.exercise))
        if state.selected_date:
            query.append(QueryFilter("date", "==", state.selected_date))
        elif not filters.exercise:
            order_by = "timestamp"
        if filters.pain:
            query.append(QueryFilter("pain", "==", True))

        # acquire before any await: the most recent call owns the slot
        registry = self._ctx.subscriptions
        sub = registry.acquire(RECORDS_SLOT)

        pinned_by_owner = None
        if filters.pinned_memo:
            pinned_by_owner = await self._fetch_student_memos()
            if not registry.is_current(sub):
                logger.debug("Coach records load superseded", extra={"generation": sub.generation})
                return None

        def on_snapshot(docs: list[StoredDocument]) -> None:
            current = self._ctx.state.state
            self._ctx.state.update(coach_records=group_by_owner(
                docs, current.selected_students, pinned_by_owner
            ))

        sub.handle = documents.watch_query(
            RECORDS,
            query,
            registry.guard(sub, on_snapshot),
            order_by=order_by,
            limit=RECORD_LIMIT,
        )
        logger.debug(
            "Watching coach records",
            extra={"filters": len(query), "date": state.selected_date, "exercise": filters.exercise}
        )
        return sub

    async def watch_all_pinned_memos(self) -> Optional[ScopedSubscription]:
        """Keep state.student_memos in step with every student's workout memos."""
        documents = self._ctx.store_or_none("watch_all_pinned_memos")
        if documents is None:
            return None

        registry = self._ctx.subscriptions

        def on_snapshot(docs: list[StoredDocument]) -> None:
            self._ctx.state.update(student_memos={
                doc.id: pinned_memos_from_document(doc, doc.id) for doc in docs
            })

        sub = registry.acquire(ALL_PINNED_MEMOS_SLOT)
        sub.handle = documents.watch_query(PINNED_MEMOS, [], registry.guard(sub, on_snapshot))
        return sub

    async def _fetch_student_memos(self) -> dict[str, list[PinnedMemo]]:
        docs = await self._ctx.require_store().query(PINNED_MEMOS)
        memos = {}
        for doc in docs:
            owner = doc.data.get("userName") or doc.id
            memos[owner] = pinned_memos_from_document(doc, owner)
        self._ctx.state.update(student_memos=memos)
        return memos

    async def load_coach_memos(self) -> dict[str, list[CoachMemo]]:
        documents = self._ctx.store_or_none("load_coach_memos")
        if documents is None:
            return {}
        docs = await documents.query(COACH_PINNED_MEMOS)
        by_student = {doc.id: coach_memos_from_document(doc) for doc in docs}
        self._ctx.state.update(coach_memos_by_student=by_student)
        return by_student

    # -----------------------------------------------------------------------
    # Coach memos
    # -----------------------------------------------------------------------

    async def pin_coach_memo(self, student: str, exercise: str, text: str) -> None:
        """Pin text for a student's exercise, appending to an existing memo."""
        coach = self._ctx.require_user()
        text = (text or "").strip()
        if not text:
            raise ParameterValidationError("Memo text is required")
        documents = self._ctx.store_or_none("pin_coach_memo")
        if documents is None:
            return

        memos = coach_memos_from_document(await documents.get(COACH_PINNED_MEMOS, student))
        index = next((i for i, m in enumerate(memos) if m.exercise == exercise), None)
        if index is not None:
            existing = memos[index]
            memos[index] = replace(existing, text=f"{existing.text}\n{text}" if existing.text else text)
            memos[index].touch()
        else:
            memos.append(CoachMemo(exercise=exercise, text=text, pinned_by=coach))
        await self._write_coach_memos(student, memos)

    async def send_message(self, student: str, title: str, content: str) -> None:
        """Put a personal message at the top of a student's coach memos."""
        coach = self._ctx.require_user()
        content = (content or "").strip()
        if not content:
            raise ParameterValidationError("Message content is required")
        documents = self._ctx.store_or_none("send_message")
        if documents is None:
            return

        memos = coach_memos_from_document(await documents.get(COACH_PINNED_MEMOS, student))
        memos.insert(0, CoachMemo(
            exercise=(title or "").strip() or DEFAULT_MESSAGE_TITLE,
            text=content,
            pinned_by=coach,
            kind="message",
        ))
        await self._write_coach_memos(student, memos)
        logger.info("Coach message sent", extra={"student": student})

    async def update_coach_memo(self, student: str, memo_id: str, text: str) -> bool:
        return await self._edit_coach_memo(student, memo_id, text)

    async def delete_coach_memo(self, student: str, memo_id: str) -> bool:
        return await self._edit_coach_memo(student, memo_id, None)

    async def _edit_coach_memo(self, student: str, memo_id: str, text: Optional[str]) -> bool:
        documents = self._ctx.store_or_none("edit_coach_memo")
        if documents is None:
            return False
        doc = await documents.get(COACH_PINNED_MEMOS, student)
        if doc is None:
            return False

        memos = coach_memos_from_document(doc)
        index = find_coach_memo(memos, memo_id)
        if index is None:
            return False
        if text is None:
            memos.pop(index)
        else:
            memos[index] = replace(memos[index], text=text)
            memos[index].touch()

        await documents.update(COACH_PINNED_MEMOS, student, {"memos": [m.to_document() for m in memos]})
        self._cache_coach_memos(student, memos)
        return True

    async def save_comment_on_student_memo(self, student: str, index: int, comment: str) -> None:
        """Attach a coach comment to one of the student's workout memos."""
        documents = self._ctx.store_or_none("save_comment_on_student_memo")
        if documents is None:
            return
        doc = await documents.get(PINNED_MEMOS, student)
        if doc is None:
            raise ParameterValidationError(f"No workout memos for {student}")
        memos = list(doc.data.get("memos") or [])
        if not 0 <= index < len(memos):
            raise ParameterValidationError(f"No workout memo at position {index}")

        memos[index] = {**memos[index], "coachComment": (comment or "").strip()}
        await documents.update(PINNED_MEMOS, student, {"memos": memos, "updatedAt": SERVER_TIMESTAMP})
        self._schedule_reload()

    async def _write_coach_memos(self, student: str, memos: list[CoachMemo]) -> None:
        await self._ctx.require_store().set(COACH_PINNED_MEMOS, student, {
            "userName": student,
            "memos": [m.to_document() for m in memos],
            "updatedAt": SERVER_TIMESTAMP,
        })
        self._cache_coach_memos(student, memos)

    def _cache_coach_memos(self, student: str, memos: list[CoachMemo]) -> None:
        by_student = dict(self._ctx.state.state.coach_memos_by_student)
        by_student[student] = memos
        self._ctx.state.update(coach_memos_by_student=by_student)

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    async def delete_student_account(self, student: str) -> None:
        """
        Remove a student's account and memos.

        Their records are archived rather than deleted.
        """
        documents = self._ctx.store_or_none("delete_student_account")
        if documents is None:
            return

        records = await documents.query(RECORDS, [QueryFilter("userName", "==", student)])
        writes = [
            BatchWrite("delete", USERS, student),
            BatchWrite("delete", COACH_PINNED_MEMOS, student),
            BatchWrite("delete", PINNED_MEMOS, student),
        ]
        writes.extend(BatchWrite("update", RECORDS, doc.id, {"archived": True}) for doc in records)
        await documents.commit_batch(writes)

        state = self._ctx.state.state
        selected = [s for s in state.selected_students if s != student]
        write_json(self._ctx.local, SELECTED_STUDENTS_KEY, selected)
        by_student = {k: v for k, v in state.coach_memos_by_student.items() if k != student}
        self._ctx.state.update(
            selected_students=selected,
            all_students=[s for s in state.all_students if s != student],
            coach_memos_by_student=by_student,
        )
        logger.info("Deleted student account", extra={"student": student, "archived_records": len(records)})
