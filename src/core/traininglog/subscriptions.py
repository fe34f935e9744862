"""
Live subscription lifecycle.

Each live query belongs to a named slot ("records", "calendar", ...).
Acquiring a slot cancels whatever held it before, and every delivery
is checked against the generation it was opened with. A callback that
was already queued when its subscription got replaced therefore finds
a stale generation and is dropped instead of overwriting newer state.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .documents import WatchHandle

logger = logging.getLogger(__name__)

RECORDS_SLOT = "records"
CALENDAR_SLOT = "calendar"
PINNED_EXERCISES_SLOT = "pinned_exercises"
COACH_MEMOS_SLOT = "coach_memos"
ALL_PINNED_MEMOS_SLOT = "all_pinned_memos"


@dataclass
class ScopedSubscription:
    """A slot's current holder. Active until released or superseded."""
    slot: str
    generation: int
    handle: Optional[WatchHandle] = None
    active: bool = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self.handle is not None:
            try:
                self.handle.cancel()
            except Exception as e:
                logger.warning(
                    "Failed to cancel watch",
                    extra={"slot": self.slot, "error": str(e)}
                )


class SubscriptionRegistry:
    """
    At most one live subscription per slot.

    Usage:
        sub = registry.acquire("records")
        sub.handle = store.watch_query(..., registry.guard(sub, on_records))
    """

    def __init__(self) -> None:
        self._slots: dict[str, ScopedSubscription] = {}
        self._generation = 0
        self.dropped_deliveries = 0

    def acquire(self, slot: str) -> ScopedSubscription:
        """Cancel the slot's current holder and return a fresh one."""
        self.release(slot)
        self._generation += 1
        sub = ScopedSubscription(slot=slot, generation=self._generation)
        self._slots[slot] = sub
        logger.debug("Acquired subscription", extra={"slot": slot, "generation": sub.generation})
        return sub

    def is_current(self, sub: ScopedSubscription) -> bool:
        return sub.active and self._slots.get(sub.slot) is sub

    def guard(self, sub: ScopedSubscription, callback: Callable[[Any], None]) -> Callable[[Any], None]:
        """Wrap a snapshot callback so it only runs while sub is current."""

        def deliver(snapshot: Any) -> None:
            if not self.is_current(sub):
                self.dropped_deliveries += 1
                logger.debug(
                    "Dropped stale delivery",
                    extra={"slot": sub.slot, "generation": sub.generation}
                )
                return
            callback(snapshot)

        return deliver

    def release(self, slot: str) -> None:
        sub = self._slots.pop(slot, None)
        if sub is not None:
            sub.cancel()

    def release_all(self) -> None:
        for slot in list(self._slots):
            self.release(slot)

    def active_slots(self) -> list[str]:
        return sorted(self._slots)
