"""
Training records and pinned workout memos.

Students log exercises per day and keep one "workout memo" per
exercise; coaches leave feedback on records, which is mirrored into
the student's coach memos. Live queries write straight into the
state store and go through the subscription registry, so a day change
never leaves the previous day's listener writing into state.
"""

import logging
from dataclasses import replace
from typing import Any, Optional, Sequence, Union

from src.core.errors import ParameterValidationError

from .context import TrainingLogContext
from .documents import (
    COACH_PINNED_MEMOS,
    PINNED_MEMOS,
    RECORDS,
    SERVER_TIMESTAMP,
    BatchWrite,
    QueryFilter,
    StoredDocument,
)
from .models import (
    CoachMemo,
    ExerciseSet,
    PinnedMemo,
    TrainingRecord,
    parse_exercise_sets,
    record_from_document,
    validate_iso_day,
)
from .subscriptions import COACH_MEMOS_SLOT, PINNED_EXERCISES_SLOT, RECORDS_SLOT, ScopedSubscription
from .utils import clear_form_draft, read_json, write_json

logger = logging.getLogger(__name__)

SetInput = Union[ExerciseSet, dict[str, Any]]


def pinned_storage_key(owner_id: str) -> str:
    return f"pinnedExercises_{owner_id}"


def _coerce_sets(sets: Sequence[SetInput]) -> list[ExerciseSet]:
    if sets and all(isinstance(s, ExerciseSet) for s in sets):
        return [replace(s, index=i) for i, s in enumerate(sets)]
    raw = [s.to_document() if isinstance(s, ExerciseSet) else s for s in sets]
    return parse_exercise_sets(raw, skip_blank=True)


def _require_exercise(exercise: str) -> str:
    exercise = (exercise or "").strip()
    if not exercise:
        raise ParameterValidationError("Exercise name is required")
    return exercise


def records_from_snapshot(docs: list[StoredDocument]) -> list[TrainingRecord]:
    """Readable, non-archived records in display order."""
    records = [record_from_document(d.id, d.data) for d in docs]
    live = [r for r in records if r is not None and not r.archived]
    live.sort(key=TrainingRecord.sort_key)
    return live


def coach_memos_from_document(doc: Optional[StoredDocument]) -> list[CoachMemo]:
    if doc is None:
        return []
    return [CoachMemo.from_document(m) for m in doc.data.get("memos") or []]


def pinned_memos_from_document(doc: Optional[StoredDocument], owner_id: str = "") -> list[PinnedMemo]:
    if doc is None:
        return []
    owner = doc.data.get("userName") or owner_id
    return [PinnedMemo.from_document(m, owner) for m in doc.data.get("memos") or []]


class RecordsSync:
    """Record CRUD, day-scoped live queries and workout memos."""

    def __init__(self, ctx: TrainingLogContext) -> None:
        self._ctx = ctx

    # -----------------------------------------------------------------------
    # Live queries
    # -----------------------------------------------------------------------

    async def load_records_for_date(
        self,
        day: str,
        owner_ids: Sequence[str],
    ) -> Optional[ScopedSubscription]:
        """
        Watch the records of the given owners on one day.

        Replaces any previous records subscription. A single owner is
        filtered in the query; several owners (coach scope) are queried
        by date and filtered here.
        """
        documents = self._ctx.store_or_none("load_records_for_date")
        if documents is None:
            return None
        validate_iso_day(day)

        registry = self._ctx.subscriptions
        owners = set(owner_ids)
        if not owners:
            registry.release(RECORDS_SLOT)
            self._ctx.state.update(records=[])
            return None

        filters = [QueryFilter("date", "==", day)]
        if len(owners) == 1:
            filters.insert(0, QueryFilter("userName", "==", next(iter(owners))))

        def on_snapshot(docs: list[StoredDocument]) -> None:
            records = [r for r in records_from_snapshot(docs) if r.owner_id in owners]
            self._ctx.state.update(records=records)

        sub = registry.acquire(RECORDS_SLOT)
        sub.handle = documents.watch_query(RECORDS, filters, registry.guard(sub, on_snapshot))
        logger.debug("Watching records", extra={"date": day, "owners": len(owners)})
        return sub

    async def load_my_records(self) -> Optional[ScopedSubscription]:
        user = self._ctx.require_user()
        day = self._ctx.state.state.selected_date
        if not day:
            return None
        return await self.load_records_for_date(day, [user])

    async def load_pinned_exercises(self, owner_id: str) -> Optional[ScopedSubscription]:
        """Watch pinnedMemos/{owner} and mirror it into local storage."""
        documents = self._ctx.store_or_none("load_pinned_exercises")
        if documents is None:
            cached = read_json(self._ctx.local, pinned_storage_key(owner_id), [])
            self._ctx.state.update(
                pinned_exercises=[PinnedMemo.from_document(m, owner_id) for m in cached if isinstance(m, dict)]
            )
            return None

        registry = self._ctx.subscriptions

        def on_snapshot(doc: Optional[StoredDocument]) -> None:
            memos = pinned_memos_from_document(doc, owner_id)
            write_json(self._ctx.local, pinned_storage_key(owner_id), [m.to_document() for m in memos])
            self._ctx.state.update(pinned_exercises=memos)

        sub = registry.acquire(PINNED_EXERCISES_SLOT)
        sub.handle = documents.watch_document(PINNED_MEMOS, owner_id, registry.guard(sub, on_snapshot))
        return sub

    async def watch_coach_memos(self, owner_id: str) -> Optional[ScopedSubscription]:
        """Watch the memos coaches pinned for this student."""
        documents = self._ctx.store_or_none("watch_coach_memos")
        if documents is None:
            return None

        registry = self._ctx.subscriptions

        def on_snapshot(doc: Optional[StoredDocument]) -> None:
            self._ctx.state.update(coach_pinned_memos=coach_memos_from_document(doc))

        sub = registry.acquire(COACH_MEMOS_SLOT)
        sub.handle = documents.watch_document(COACH_PINNED_MEMOS, owner_id, registry.guard(sub, on_snapshot))
        return sub

    # -----------------------------------------------------------------------
    # Record writes
    # -----------------------------------------------------------------------

    async def add_record(
        self,
        exercise: str,
        sets: Sequence[SetInput],
        memo: str = "",
        pain: bool = False,
    ) -> Optional[str]:
        """
        Log an exercise for the selected day and return the new record id.

        A memo is not stored on the record: it becomes the workout memo
        for the exercise and the record is flagged pinned instead.
        """
        user = self._ctx.require_user()
        exercise = _require_exercise(exercise)
        parsed = _coerce_sets(sets)
        day = self._ctx.state.state.selected_date
        if not day:
            raise ParameterValidationError("No date selected")

        documents = self._ctx.store_or_none("add_record")
        if documents is None:
            return None

        existing = await documents.query(RECORDS, [
            QueryFilter("userName", "==", user),
            QueryFilter("date", "==", day),
        ])
        order = len(records_from_snapshot(existing))

        memo = (memo or "").strip()
        if memo:
            await self.save_workout_memo(exercise, memo, pain=pain, record_date=day)

        record = TrainingRecord(
            owner_id=user,
            date=day,
            exercise=exercise,
            sets=parsed,
            memo="",
            pinned=bool(memo),
            pain=pain,
            order=order,
        )
        data = record.to_document()
        data["timestamp"] = SERVER_TIMESTAMP
        record_id = await documents.add(RECORDS, data)
        clear_form_draft(self._ctx.local, user)

        logger.info(
            "Record added",
            extra={"record_id": record_id, "user": user, "date": day, "sets": len(parsed)}
        )
        return record_id

    async def update_record(
        self,
        record_id: str,
        exercise: str,
        sets: Sequence[SetInput],
        memo: str = "",
        pain: bool = False,
        day: Optional[str] = None,
    ) -> None:
        self._ctx.require_user()
        exercise = _require_exercise(exercise)
        parsed = _coerce_sets(sets)
        day = validate_iso_day(day or self._ctx.state.state.selected_date or "")

        documents = self._ctx.store_or_none("update_record")
        if documents is None:
            return

        memo = (memo or "").strip()
        if memo:
            await self.save_workout_memo(exercise, memo, pain=pain, record_date=day)

        await documents.update(RECORDS, record_id, {
            "exercise": exercise,
            "sets": [s.to_document() for s in parsed],
            "memo": "",
            "pain": pain,
            "date": day,
        })
        logger.info("Record updated", extra={"record_id": record_id})

    async def archive_record(self, record_id: str) -> None:
        """Hide a record from every view. Records are never hard-deleted."""
        documents = self._ctx.store_or_none("archive_record")
        if documents is None:
            return
        await documents.update(RECORDS, record_id, {"archived": True})
        logger.info("Record archived", extra={"record_id": record_id})

    async def move_record(self, record_id: str, direction: int) -> bool:
        """
        Swap a record with its neighbour in the current user's day.

        Orders are first normalized to 0..n-1 so legacy records without
        an order end up in a consistent position. Returns False for a
        move past either end.
        """
        user = self._ctx.require_user()
        day = self._ctx.state.state.selected_date
        documents = self._ctx.store_or_none("move_record")
        if documents is None or not day:
            return False

        docs = await documents.query(RECORDS, [
            QueryFilter("userName", "==", user),
            QueryFilter("date", "==", day),
        ])
        records = records_from_snapshot(docs)
        ids = [r.id for r in records]
        if record_id not in ids:
            return False

        current = ids.index(record_id)
        target = current + direction
        if target < 0 or target >= len(ids):
            return False

        ids[current], ids[target] = ids[target], ids[current]
        previous = {r.id: r.order for r in records}
        writes = [
            BatchWrite("update", RECORDS, doc_id, {"order": index})
            for index, doc_id in enumerate(ids)
            if previous[doc_id] != index
        ]
        await documents.commit_batch(writes)
        return True

    async def save_feedback(self, record_id: str, feedback: str) -> None:
        """
        Write coach feedback on a record.

        The feedback is also kept as the coach memo for that exercise in
        the owner's coachPinnedMemos document; empty feedback removes it.
        """
        coach = self._ctx.require_user()
        documents = self._ctx.store_or_none("save_feedback")
        if documents is None:
            return

        feedback = (feedback or "").strip()
        await documents.update(RECORDS, record_id, {"feedback": feedback})

        doc = await documents.get(RECORDS, record_id)
        if doc is None:
            return
        owner = doc.data.get("userName", "")
        exercise = doc.data.get("exercise", "")

        memo_doc = await documents.get(COACH_PINNED_MEMOS, owner)
        memos = coach_memos_from_document(memo_doc)
        index = next((i for i, m in enumerate(memos) if m.exercise == exercise), None)

        if feedback:
            if index is not None:
                memos[index] = replace(memos[index], text=feedback)
                memos[index].touch()
            else:
                memos.append(CoachMemo(exercise=exercise, text=feedback, pinned_by=coach))
        elif index is not None:
            memos.pop(index)

        if memos or memo_doc is not None:
            await documents.set(COACH_PINNED_MEMOS, owner, {
                "userName": owner,
                "memos": [m.to_document() for m in memos],
                "updatedAt": SERVER_TIMESTAMP,
            })
        logger.info("Feedback saved", extra={"record_id": record_id, "owner": owner})

    # -----------------------------------------------------------------------
    # Workout memos
    # -----------------------------------------------------------------------

    async def save_workout_memo(
        self,
        exercise: str,
        text: str,
        pain: bool = False,
        record_date: Optional[str] = None,
    ) -> None:
        """Set the memo for an exercise, overwriting an earlier one."""
        user = self._ctx.require_user()
        exercise = _require_exercise(exercise)

        memos = list(self._ctx.state.state.pinned_exercises)
        index = next((i for i, m in enumerate(memos) if m.exercise == exercise), None)
        if index is not None:
            memos[index] = replace(
                memos[index],
                text=text,
                pain=pain,
                record_date=record_date or memos[index].record_date,
            )
        else:
            memos.append(PinnedMemo(
                exercise=exercise,
                text=text,
                owner_id=user,
                pain=pain,
                record_date=record_date,
            ))
        await self._store_pinned(user, memos)

    async def remove_pinned_exercise(self, index: int) -> None:
        memos = list(self._ctx.state.state.pinned_exercises)
        if not 0 <= index < len(memos):
            raise ParameterValidationError(f"No pinned memo at position {index}")
        memos.pop(index)
        await self._store_pinned(self._ctx.require_user(), memos)

    async def move_pinned_memo(self, index: int, direction: int) -> bool:
        memos = list(self._ctx.state.state.pinned_exercises)
        target = index + direction
        if not (0 <= index < len(memos) and 0 <= target < len(memos)):
            return False
        memos[index], memos[target] = memos[target], memos[index]
        await self._store_pinned(self._ctx.require_user(), memos)
        return True

    async def clear_pinned_memos(self) -> None:
        await self._store_pinned(self._ctx.require_user(), [])

    async def remove_coach_comment(self, exercise: str) -> None:
        """Clear the coach's comment on one of the student's own memos."""
        memos = list(self._ctx.state.state.pinned_exercises)
        index = next((i for i, m in enumerate(memos) if m.exercise == exercise), None)
        if index is None:
            return
        memos[index] = replace(memos[index], coach_comment="")
        await self._store_pinned(self._ctx.require_user(), memos)

    async def remove_coach_pinned_memo(self, index: int) -> None:
        """Let a student dismiss a memo or message a coach pinned for them."""
        user = self._ctx.require_user()
        memos = list(self._ctx.state.state.coach_pinned_memos)
        if not 0 <= index < len(memos):
            raise ParameterValidationError(f"No coach memo at position {index}")

        documents = self._ctx.store_or_none("remove_coach_pinned_memo")
        if documents is None:
            return
        memos.pop(index)
        await documents.set(COACH_PINNED_MEMOS, user, {
            "userName": user,
            "memos": [m.to_document() for m in memos],
            "updatedAt": SERVER_TIMESTAMP,
        })
        self._ctx.state.update(coach_pinned_memos=memos)

    async def _store_pinned(self, owner_id: str, memos: list[PinnedMemo]) -> None:
        """Persist the memo list, then publish it. A failed write changes nothing."""
        documents = self._ctx.documents
        if documents is not None:
            if memos:
                await documents.set(PINNED_MEMOS, owner_id, {
                    "userName": owner_id,
                    "memos": [m.to_document() for m in memos],
                    "updatedAt": SERVER_TIMESTAMP,
                })
            else:
                await documents.delete(PINNED_MEMOS, owner_id)

        write_json(self._ctx.local, pinned_storage_key(owner_id), [m.to_document() for m in memos])
        self._ctx.state.update(pinned_exercises=memos)

    # -----------------------------------------------------------------------
    # Migration
    # -----------------------------------------------------------------------

    async def migrate_local_storage_to_firestore(self, owner_id: str) -> bool:
        """
        Copy memos kept only in local storage into the document store.

        Runs at most once per owner: nothing is copied when the store
        already has a pinnedMemos document or the local list is empty.
        """
        documents = self._ctx.store_or_none("migrate_local_storage_to_firestore")
        if documents is None:
            return False

        if await documents.get(PINNED_MEMOS, owner_id) is not None:
            return False

        local = read_json(self._ctx.local, pinned_storage_key(owner_id), [])
        if not isinstance(local, list):
            return False
        memos = [m for m in local if isinstance(m, dict)]
        if not memos:
            return False

        await documents.set(PINNED_MEMOS, owner_id, {
            "userName": owner_id,
            "memos": memos,
            "updatedAt": SERVER_TIMESTAMP,
            "migratedFrom": "localStorage",
        })
        logger.info("Migrated local pinned memos", extra={"owner": owner_id, "count": len(memos)})
        return True
