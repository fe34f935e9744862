"""
The training log client, assembled.

TrainingLogApp owns one service per concern, all sharing a single
TrainingLogContext. Building it is infrastructure-agnostic; see
src/client.py for the factory that picks Firestore or the in-memory
store from settings.
"""

import logging
from typing import Optional

from .auth import AuthService
from .calendar import CalendarSync
from .coach import CoachSync
from .context import TrainingLogContext
from .exercises import ExerciseCatalog
from .models import Session
from .notices import NoticeBoard
from .records import RecordsSync
from .render import Renderer, ViewSink
from .state import StateStore

logger = logging.getLogger(__name__)


class TrainingLogApp:

    def __init__(self, ctx: TrainingLogContext, sink: Optional[ViewSink] = None) -> None:
        self.ctx = ctx
        self.records = RecordsSync(ctx)
        self.calendar = CalendarSync(ctx, self.records)
        self.coach = CoachSync(ctx)
        self.exercises = ExerciseCatalog(ctx)
        self.notices = NoticeBoard(ctx)
        self.auth = AuthService(ctx, self.records)
        self.renderer = Renderer(ctx.state, sink) if sink is not None else None

        if not ctx.store_ready:
            logger.warning("Training log started without a document store; sync features are off")

    @property
    def state(self) -> StateStore:
        return self.ctx.state

    async def start(self) -> Optional[Session]:
        """Attach rendering and try the remembered login."""
        if self.renderer is not None:
            self.renderer.attach()
        session = await self.auth.auto_login()
        if session is not None:
            await self.open_views()
        return session

    async def login(self, user_id: str, password: str, remember: bool = False) -> Session:
        session = await self.auth.login(user_id, password, remember=remember)
        await self.open_views()
        return session

    async def open_views(self) -> None:
        """Open the live queries the logged-in role looks at."""
        state = self.state.state
        if state.session is None:
            return

        if state.is_coach:
            await self.coach.load_student_list()
            await self.coach.watch_all_pinned_memos()
            await self.coach.load_coach_memos()
        else:
            await self.records.load_my_records()
            await self.calendar.load_month()
            await self.records.watch_coach_memos(state.session.user_id)
            await self.notices.check()
        await self.exercises.load()

    def logout(self) -> None:
        self.coach.debouncer.cancel()
        self.auth.logout()

    def close(self) -> None:
        """Stop live queries and rendering without touching the remembered login."""
        self.coach.debouncer.cancel()
        self.ctx.subscriptions.release_all()
        if self.renderer is not None:
            self.renderer.detach()
