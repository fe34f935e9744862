"""
Unit tests for login, the exercise catalog, notices and the client factory.
"""

import asyncio
import json
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from src.client import create_training_log_app
from src.config.settings import Settings
from src.core.errors import ParameterValidationError
from src.core.traininglog.auth import AuthService, InvalidCredentialsError, is_password_hash
from src.core.traininglog.context import TrainingLogContext
from src.core.traininglog.documents import NOTICES, USERS, StoreUnavailableError
from src.core.traininglog.exercises import DuplicateExerciseError, ExerciseCatalog
from src.core.traininglog.models import Notice, Role, Session
from src.core.traininglog.notices import NoticeBoard, hidden_notice_key
from src.core.traininglog.records import RecordsSync
from src.core.traininglog.state import StateStore
from src.core.traininglog.utils import LOGIN_CREDENTIALS_KEY, SAVED_USER_KEY, save_login
from src.infrastructure.firestore.client import InMemoryDocumentStore
from src.infrastructure.local_storage.client import InMemoryStorage

TODAY = date(2024, 3, 5)


def make_ctx(documents=None, local=None):
    return TrainingLogContext(
        state=StateStore(),
        documents=documents,
        local=local if local is not None else InMemoryStorage(),
        today=lambda: TODAY,
    )


def make_auth(ctx):
    return AuthService(ctx, RecordsSync(ctx))


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestLogin:

    def test_new_name_creates_hashed_student_account(self):
        async def scenario():
            ctx = make_ctx(InMemoryDocumentStore())
            session = await make_auth(ctx).login("kim", "pw")
            return ctx, session

        ctx, session = asyncio.run(scenario())
        assert session.role is Role.STUDENT
        stored = ctx.documents.documents(USERS)["kim"]
        assert is_password_hash(stored["password"])
        assert stored["isCoach"] is False
        assert ctx.state.state.selected_date == "2024-03-05"
        assert ctx.state.state.calendar.month == 3

    def test_wrong_password_rejected(self):
        async def scenario():
            ctx = make_ctx(InMemoryDocumentStore())
            auth = make_auth(ctx)
            await auth.login("kim", "pw")
            auth.logout()
            with pytest.raises(InvalidCredentialsError):
                await auth.login("kim", "other")
            return ctx

        ctx = asyncio.run(scenario())
        assert ctx.state.state.session is None

    def test_blank_input_rejected(self):
        async def scenario():
            with pytest.raises(ParameterValidationError, match="both required"):
                await make_auth(make_ctx(InMemoryDocumentStore())).login(" ", "pw")

        asyncio.run(scenario())

    def test_login_without_store_raises(self):
        async def scenario():
            with pytest.raises(StoreUnavailableError):
                await make_auth(make_ctx(None)).login("kim", "pw")

        asyncio.run(scenario())

    def test_plain_password_is_upgraded(self):
        async def scenario():
            documents = InMemoryDocumentStore()
            await documents.set(USERS, "kim", {"password": "pw", "isCoach": False})
            await make_auth(make_ctx(documents)).login("kim", "pw")
            return documents

        documents = asyncio.run(scenario())
        assert is_password_hash(documents.documents(USERS)["kim"]["password"])

    def test_coach_starts_on_all_dates(self):
        async def scenario():
            documents = InMemoryDocumentStore()
            await documents.set(USERS, "coach", {"password": generate_password_hash("pw"), "isCoach": True})
            ctx = make_ctx(documents)
            session = await make_auth(ctx).login("coach", "pw")
            return ctx, session

        ctx, session = asyncio.run(scenario())
        assert session.is_coach
        assert ctx.state.state.selected_date is None

    def test_remember_saves_login(self):
        async def scenario():
            ctx = make_ctx(InMemoryDocumentStore())
            await make_auth(ctx).login("kim", "pw", remember=True)
            return ctx

        ctx = asyncio.run(scenario())
        assert json.loads(ctx.local.get_item(SAVED_USER_KEY)) == {
            "name": "kim", "password": "pw", "isCoach": False,
        }

    def test_login_runs_local_memo_migration(self):
        async def scenario():
            local = InMemoryStorage({"pinnedExercises_kim": json.dumps([{"exercise": "squat", "memo": "m"}])})
            ctx = make_ctx(InMemoryDocumentStore(), local)
            await make_auth(ctx).login("kim", "pw")
            await ctx.documents.settle()
            return ctx

        ctx = asyncio.run(scenario())
        assert [m.exercise for m in ctx.state.state.pinned_exercises] == ["squat"]


class TestAutoLogin:

    def test_restores_saved_session(self):
        async def scenario():
            documents = InMemoryDocumentStore()
            await documents.set(USERS, "kim", {"password": generate_password_hash("pw")})
            local = InMemoryStorage()
            save_login(local, "kim", "pw", False)
            ctx = make_ctx(documents, local)
            return ctx, await make_auth(ctx).auto_login()

        ctx, session = asyncio.run(scenario())
        assert session.user_id == "kim"
        assert ctx.state.state.current_user == "kim"

    def test_stale_password_is_forgotten(self):
        async def scenario():
            documents = InMemoryDocumentStore()
            await documents.set(USERS, "kim", {"password": generate_password_hash("new")})
            local = InMemoryStorage()
            save_login(local, "kim", "old", False)
            ctx = make_ctx(documents, local)
            return ctx, await make_auth(ctx).auto_login()

        ctx, session = asyncio.run(scenario())
        assert session is None
        assert ctx.local.get_item(SAVED_USER_KEY) is None

    def test_missing_account_does_not_create_one(self):
        async def scenario():
            local = InMemoryStorage()
            save_login(local, "ghost", "pw", False)
            ctx = make_ctx(InMemoryDocumentStore(), local)
            return ctx, await make_auth(ctx).auto_login()

        ctx, session = asyncio.run(scenario())
        assert session is None
        assert ctx.documents.documents(USERS) == {}


class TestLogout:

    def test_logout_clears_everything(self):
        async def scenario():
            local = InMemoryStorage({LOGIN_CREDENTIALS_KEY: "x"})
            ctx = make_ctx(InMemoryDocumentStore(), local)
            auth = make_auth(ctx)
            await auth.login("kim", "pw", remember=True)
            await RecordsSync(ctx).load_my_records()
            auth.logout()
            return ctx

        ctx = asyncio.run(scenario())
        assert ctx.state.state.session is None
        assert ctx.subscriptions.active_slots() == []
        assert ctx.documents.active_watch_count == 0
        assert ctx.local.get_item(SAVED_USER_KEY) is None
        assert ctx.local.get_item(LOGIN_CREDENTIALS_KEY) is None


# ---------------------------------------------------------------------------
# Exercises and notices
# ---------------------------------------------------------------------------

class TestExerciseCatalog:

    def test_add_search_delete(self):
        async def scenario():
            ctx = make_ctx(InMemoryDocumentStore())
            catalog = ExerciseCatalog(ctx)
            squat = await catalog.add("Back Squat")
            await catalog.add("Bench Press")
            with pytest.raises(DuplicateExerciseError):
                await catalog.add("Bench Press")
            found = catalog.search("squat")
            everything = catalog.search("")
            await catalog.delete(squat)
            return ctx, found, everything

        ctx, found, everything = asyncio.run(scenario())
        assert found == ["Back Squat"]
        assert everything == ["Back Squat", "Bench Press"]
        assert [e["name"] for e in ctx.state.state.exercises] == ["Bench Press"]


class TestNoticeBoard:

    def _ctx(self, notice_data, role=Role.STUDENT, local=None):
        async def setup():
            documents = InMemoryDocumentStore()
            await documents.set(NOTICES, "shared", notice_data)
            ctx = make_ctx(documents, local)
            ctx.state.update(session=Session(user_id="kim", role=role))
            return ctx
        return setup()

    def test_active_notice_shown(self):
        async def scenario():
            ctx = await self._ctx({"title": "t", "content": "c", "isVisible": True,
                                   "startDate": "2024-03-01", "endDate": "2024-03-10"})
            return ctx, await NoticeBoard(ctx).check()

        ctx, notice = asyncio.run(scenario())
        assert notice.title == "t"
        assert ctx.state.state.notice == notice

    def test_expired_notice_hidden(self):
        async def scenario():
            ctx = await self._ctx({"title": "t", "isVisible": True, "endDate": "2024-03-01"})
            return await NoticeBoard(ctx).check()

        assert asyncio.run(scenario()) is None

    def test_hidden_for_today(self):
        async def scenario():
            ctx = await self._ctx({"title": "t", "isVisible": True})
            board = NoticeBoard(ctx)
            await board.check()
            board.hide_for_today()
            again = await board.check()
            return ctx, again

        ctx, again = asyncio.run(scenario())
        assert again is None
        assert ctx.state.state.notice is None
        assert ctx.local.get_item(hidden_notice_key("kim")) == "2024-03-05"

    def test_coach_never_sees_popup(self):
        async def scenario():
            ctx = await self._ctx({"title": "t", "isVisible": True}, role=Role.COACH)
            return await NoticeBoard(ctx).check()

        assert asyncio.run(scenario()) is None

    def test_publish(self):
        async def scenario():
            ctx = make_ctx(InMemoryDocumentStore())
            await NoticeBoard(ctx).publish(Notice(title="t", content="c", is_visible=True))
            return ctx

        ctx = asyncio.run(scenario())
        assert ctx.documents.documents(NOTICES)["shared"]["isVisible"] is True


# ---------------------------------------------------------------------------
# Client factory
# ---------------------------------------------------------------------------

class RecordingSink:
    def __init__(self):
        self.shown = {}

    def show(self, view, html):
        self.shown[view] = html


class TestCreateTrainingLogApp:

    def test_mock_mode_app_logs_in_and_renders(self):
        sink = RecordingSink()
        settings = Settings(firestore_mock_mode=True, sheets_mock_mode=True, debounce_ms=10)

        async def scenario():
            app = create_training_log_app(settings=settings, sink=sink, local=InMemoryStorage())
            assert await app.start() is None
            session = await app.login("kim", "pw")
            record_id = await app.records.add_record(
                "squat", [{"intensity": {"value": "60", "unit": "kg"}, "reps": {"value": "8", "unit": "회"}}]
            )
            await app.ctx.documents.settle()
            app.close()
            return app, session, record_id

        app, session, record_id = asyncio.run(scenario())
        assert session.user_id == "kim"
        assert app.ctx.debounce_seconds == 0.01
        assert "squat" in sink.shown["records"]
        assert "60kg × 8회" in sink.shown["records"]
        assert app.ctx.subscriptions.active_slots() == []

    def test_inline_firestore_key_reaches_the_store(self, monkeypatch):
        seen = []

        def fake_create_document_store(config=None, mock_mode=False):
            seen.append(config)
            return InMemoryDocumentStore()

        monkeypatch.setattr("src.client.create_document_store", fake_create_document_store)
        settings = Settings(
            firestore_mock_mode=False,
            firestore_project_id="log-project",
            firestore_credentials_json='{"type": "service_account"}',
        )

        app = create_training_log_app(settings=settings, local=InMemoryStorage())

        assert app.ctx.store_ready
        assert seen[0].project_id == "log-project"
        assert seen[0].credentials_json == '{"type": "service_account"}'

    def test_malformed_inline_key_starts_degraded(self):
        settings = Settings(
            firestore_mock_mode=False,
            firestore_project_id="log-project",
            firestore_credentials_json="{not json",
        )
        app = create_training_log_app(settings=settings, local=InMemoryStorage())
        assert not app.ctx.store_ready

    def test_missing_project_starts_degraded(self):
        settings = Settings(firestore_mock_mode=False, firestore_project_id="")

        async def scenario():
            app = create_training_log_app(settings=settings, local=InMemoryStorage())
            assert not app.ctx.store_ready
            with pytest.raises(StoreUnavailableError):
                await app.login("kim", "pw")

        asyncio.run(scenario())
