"""
Explicit context handed to every sync service.

Replaces module-level globals: the state store, the document store
(None when it failed to initialize), local storage and the
subscription registry travel together in one object.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from src.core.errors import ParameterValidationError

from .documents import DocumentStore, StoreUnavailableError
from .state import StateStore
from .subscriptions import SubscriptionRegistry
from .utils import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class TrainingLogContext:
    state: StateStore
    documents: Optional[DocumentStore]
    local: KeyValueStore
    subscriptions: SubscriptionRegistry = field(default_factory=SubscriptionRegistry)
    debounce_seconds: float = 0.3
    today: Callable[[], date] = date.today

    @property
    def store_ready(self) -> bool:
        return self.documents is not None

    def require_store(self) -> DocumentStore:
        if self.documents is None:
            raise StoreUnavailableError("Document store is not initialized")
        return self.documents

    def store_or_none(self, operation: str) -> Optional[DocumentStore]:
        """The document store, or None after logging that the operation is skipped."""
        if self.documents is None:
            logger.warning(
                "Document store unavailable, skipping operation",
                extra={"operation": operation}
            )
        return self.documents

    def require_user(self) -> str:
        user = self.state.state.current_user
        if not user:
            raise ParameterValidationError("Not logged in")
        return user

    def today_iso(self) -> str:
        return self.today().isoformat()
