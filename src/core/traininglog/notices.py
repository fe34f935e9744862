"""The shared notice (notices/shared) shown to students as a popup."""

import logging
from typing import Optional

from .context import TrainingLogContext
from .documents import NOTICES, SERVER_TIMESTAMP
from .models import Notice

logger = logging.getLogger(__name__)

SHARED_NOTICE_ID = "shared"


def hidden_notice_key(user_id: str) -> str:
    return f"notice_hidden_{user_id}"


class NoticeBoard:

    def __init__(self, ctx: TrainingLogContext) -> None:
        self._ctx = ctx

    async def check(self) -> Optional[Notice]:
        """
        The notice a student should see now, or None.

        Coaches never get the popup. A student who hid it today does
        not see it again until tomorrow.
        """
        state = self._ctx.state.state
        if not state.current_user or state.is_coach:
            return None
        documents = self._ctx.store_or_none("check_notice")
        if documents is None:
            return None

        doc = await documents.get(NOTICES, SHARED_NOTICE_ID)
        if doc is None:
            return None
        notice = Notice.from_document(doc.data)
        today = self._ctx.today_iso()
        if not notice.is_active_on(today):
            return None
        if self._ctx.local.get_item(hidden_notice_key(state.current_user)) == today:
            return None

        self._ctx.state.update(notice=notice)
        return notice

    def hide_for_today(self) -> None:
        user = self._ctx.require_user()
        self._ctx.local.set_item(hidden_notice_key(user), self._ctx.today_iso())
        self._ctx.state.update(notice=None)

    async def publish(self, notice: Notice) -> None:
        """Replace the shared notice. Used from the coach's admin screen."""
        await self._ctx.require_store().set(NOTICES, SHARED_NOTICE_ID, {
            "title": notice.title,
            "content": notice.content,
            "isVisible": notice.is_visible,
            "startDate": notice.start_date,
            "endDate": notice.end_date,
            "updatedAt": SERVER_TIMESTAMP,
        })
        logger.info("Notice published", extra={"visible": notice.is_visible})
