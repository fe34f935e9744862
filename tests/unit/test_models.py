"""
Unit tests for the training log domain models.

These tests verify parsing and document translation without touching
any store or the file system.
"""

from datetime import date, datetime, timezone

import pytest

from src.core.errors import ParameterValidationError
from src.core.traininglog.models import (
    CalendarSelection,
    CoachMemo,
    ExerciseSet,
    IntensityUnit,
    Notice,
    PinnedMemo,
    RepsUnit,
    Role,
    Session,
    TrainingRecord,
    is_blank_set,
    parse_exercise_set,
    parse_exercise_sets,
    record_from_document,
)


# ---------------------------------------------------------------------------
# Set parsing
# ---------------------------------------------------------------------------

class TestParseExerciseSet:

    def test_parses_current_shape(self):
        s = parse_exercise_set(
            {"intensity": {"value": "80", "unit": "kg"}, "reps": {"value": "10", "unit": "회"}},
            0,
        )
        assert s.intensity_value == "80"
        assert s.intensity_unit is IntensityUnit.KG
        assert s.reps_value == "10"
        assert s.reps_unit is RepsUnit.REPS
        assert s.reps_count is None

    def test_parses_legacy_weight_and_reps(self):
        s = parse_exercise_set({"weight": 60, "reps": 12}, 2)
        assert s.index == 2
        assert s.intensity_value == "60"
        assert s.reps_value == "12"

    def test_seconds_times_reps_keeps_count(self):
        s = parse_exercise_set(
            {"intensity": {"value": "", "unit": "맨몸"},
             "reps": {"value": "30", "unit": "초 x 회", "count": "3"}},
            0,
        )
        assert s.is_bodyweight
        assert s.reps_unit is RepsUnit.SECONDS_X_REPS
        assert s.reps_count == "3"

    def test_bodyweight_does_not_need_intensity_value(self):
        s = parse_exercise_set({"intensity": {"unit": "맨몸"}, "reps": {"value": "15"}}, 0)
        assert s.intensity_value == "맨몸"

    def test_unknown_unit_is_rejected(self):
        with pytest.raises(ParameterValidationError, match="Unknown unit"):
            parse_exercise_set({"intensity": {"value": "5", "unit": "lb"}, "reps": {"value": "5"}}, 0)

    def test_missing_reps_is_rejected(self):
        with pytest.raises(ParameterValidationError, match="reps"):
            parse_exercise_set({"intensity": {"value": "5", "unit": "kg"}}, 0)

    def test_missing_intensity_is_rejected(self):
        with pytest.raises(ParameterValidationError, match="intensity value is required"):
            parse_exercise_set({"intensity": {"value": "", "unit": "kg"}, "reps": {"value": "5"}}, 0)

    def test_non_mapping_is_rejected(self):
        with pytest.raises(ParameterValidationError, match="expected an object"):
            parse_exercise_set(["80", "10"], 0)

    def test_blank_row_detection(self):
        assert is_blank_set({"intensity": {"value": "", "unit": "kg"}, "reps": {"value": ""}})
        assert not is_blank_set({"weight": "10", "reps": ""})

    def test_parse_sets_skips_blank_rows_and_renumbers(self):
        sets = parse_exercise_sets([
            {"intensity": {"value": "", "unit": "kg"}, "reps": {"value": ""}},
            {"weight": "40", "reps": "8"},
        ])
        assert len(sets) == 1
        assert sets[0].index == 0

    def test_parse_sets_requires_one_set(self):
        with pytest.raises(ParameterValidationError, match="At least one set"):
            parse_exercise_sets([{"weight": "", "reps": ""}])

    def test_set_document_writes_bodyweight_marker(self):
        s = ExerciseSet(index=0, intensity_unit=IntensityUnit.BODYWEIGHT, reps_value="10")
        assert s.to_document() == {
            "intensity": {"value": "맨몸", "unit": "맨몸"},
            "reps": {"value": "10", "unit": "회"},
        }


# ---------------------------------------------------------------------------
# Session and records
# ---------------------------------------------------------------------------

class TestSession:

    def test_display_name_defaults_to_user_id(self):
        session = Session(user_id="kim")
        assert session.display_name == "kim"
        assert not session.is_coach

    def test_coach_role(self):
        assert Session(user_id="coach", role=Role.COACH).is_coach

    def test_blank_user_rejected(self):
        with pytest.raises(ParameterValidationError):
            Session(user_id="  ")


class TestTrainingRecord:

    def test_invalid_date_rejected(self):
        with pytest.raises(ParameterValidationError, match="Invalid date"):
            TrainingRecord(owner_id="kim", date="2024/03/05", exercise="squat")

    def test_document_round_trip_keeps_stored_names(self):
        record = TrainingRecord(
            owner_id="kim",
            date="2024-03-05",
            exercise="squat",
            sets=[ExerciseSet(index=0, intensity_value="80", reps_value="10")],
            pain=True,
            order=1,
        )
        doc = record.to_document()
        assert doc["userName"] == "kim"
        assert doc["pain"] is True

        restored = TrainingRecord.from_document("r1", doc)
        assert restored.id == "r1"
        assert restored.sets == record.sets
        assert restored.order == 1

    def test_legacy_integer_sets_expand(self):
        record = TrainingRecord.from_document("r1", {
            "userName": "kim", "date": "2024-03-05", "exercise": "bench",
            "weight": "50", "reps": "8", "sets": 3,
        })
        assert len(record.sets) == 3
        assert [s.index for s in record.sets] == [0, 1, 2]

    def test_malformed_stored_set_is_skipped(self):
        record = TrainingRecord.from_document("r1", {
            "userName": "kim", "date": "2024-03-05", "exercise": "bench",
            "sets": [{"weight": "50", "reps": "8"}, "garbage"],
        })
        assert len(record.sets) == 1

    def test_unreadable_document_returns_none(self):
        assert record_from_document("r1", {"userName": "kim", "date": "bad"}) is None

    def test_sort_key_puts_ordered_records_first(self):
        early = datetime(2024, 1, 1, tzinfo=timezone.utc)
        late = datetime(2024, 1, 2, tzinfo=timezone.utc)
        unordered = TrainingRecord(owner_id="a", date="2024-01-01", exercise="x", timestamp=early)
        second = TrainingRecord(owner_id="a", date="2024-01-01", exercise="y", order=1, timestamp=early)
        first = TrainingRecord(owner_id="a", date="2024-01-01", exercise="z", order=0, timestamp=late)
        ordered = sorted([unordered, second, first], key=TrainingRecord.sort_key)
        assert [r.exercise for r in ordered] == ["z", "y", "x"]

    def test_has_feedback_ignores_whitespace(self):
        record = TrainingRecord(owner_id="a", date="2024-01-01", exercise="x", feedback="  ")
        assert not record.has_feedback


# ---------------------------------------------------------------------------
# Memos
# ---------------------------------------------------------------------------

class TestMemos:

    def test_pinned_memo_document_names(self):
        memo = PinnedMemo(exercise="squat", text="knees out", owner_id="kim", coach_comment="good")
        doc = memo.to_document()
        assert doc == {
            "exercise": "squat",
            "memo": "knees out",
            "userName": "kim",
            "pain": False,
            "coachComment": "good",
        }
        assert PinnedMemo.from_document(doc) == memo

    def test_pinned_memo_matches_case_insensitively(self):
        assert PinnedMemo(exercise="Squat ").matches_exercise("squat")

    def test_coach_memo_message_kind_round_trips(self):
        memo = CoachMemo(exercise="알림", text="hello", pinned_by="coach", kind="message")
        doc = memo.to_document()
        assert doc["type"] == "message"
        restored = CoachMemo.from_document(doc)
        assert restored.kind == "message"
        assert restored.id == memo.id

    def test_legacy_coach_memo_without_id(self):
        memo = CoachMemo.from_document({"exercise": "squat", "memo": "deeper"})
        assert memo.id == ""
        assert memo.kind == "memo"


# ---------------------------------------------------------------------------
# Calendar and notices
# ---------------------------------------------------------------------------

class TestCalendarSelection:

    def test_shift_wraps_year_forward(self):
        sel = CalendarSelection(year=2024, month=12).shift(1)
        assert (sel.year, sel.month) == (2025, 1)

    def test_shift_wraps_year_backward(self):
        sel = CalendarSelection(year=2024, month=1).shift(-1)
        assert (sel.year, sel.month) == (2023, 12)

    def test_month_range_handles_leap_year(self):
        assert CalendarSelection(year=2024, month=2).month_range() == ("2024-02-01", "2024-02-29")

    def test_leading_blank_days_sunday_first(self):
        # 2024-09-01 is a Sunday, 2024-03-01 a Friday
        assert CalendarSelection(year=2024, month=9).leading_blank_days == 0
        assert CalendarSelection(year=2024, month=3).leading_blank_days == 5

    def test_for_day(self):
        sel = CalendarSelection.for_day(date(2024, 3, 5))
        assert sel.selected_date == "2024-03-05"

    def test_invalid_month(self):
        with pytest.raises(ParameterValidationError):
            CalendarSelection(year=2024, month=13)


class TestNotice:

    def test_active_within_window(self):
        notice = Notice(title="t", is_visible=True, start_date="2024-03-01", end_date="2024-03-10")
        assert notice.is_active_on("2024-03-05")
        assert not notice.is_active_on("2024-03-11")

    def test_hidden_notice_is_never_active(self):
        assert not Notice(title="t", is_visible=False).is_active_on("2024-03-05")

    def test_from_document(self):
        notice = Notice.from_document({"title": "t", "content": "c", "isVisible": True})
        assert notice.is_visible
        assert notice.start_date == ""
