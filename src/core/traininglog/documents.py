"""
Document store port.

The sync layer talks to this Protocol, never to Firestore directly.
infrastructure/firestore implements it against google-cloud-firestore
and provides an in-memory version for tests and local development.

Documents are plain dicts keyed by the field names existing data uses
(userName, date, memos, ...). Watches deliver full result sets, not
diffs, which keeps the callbacks idempotent.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence

from src.core.errors import InitializationError, UpstreamServiceError

# Collection names shared with existing data
USERS = "users"
RECORDS = "records"
PINNED_MEMOS = "pinnedMemos"
COACH_PINNED_MEMOS = "coachPinnedMemos"
EXERCISES = "exercises"
NOTICES = "notices"


class DocumentStoreError(UpstreamServiceError):
    """Raised when a document store read or write fails."""
    pass


class StoreUnavailableError(InitializationError):
    """Raised when an operation needs the store but none was initialized."""
    pass


class _ServerTimestamp:
    """Sentinel replaced by the store's own clock on write."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class QueryFilter:
    """A single where-clause. op is one of ==, <, <=, >, >=, in."""
    field: str
    op: str
    value: Any


@dataclass
class StoredDocument:
    id: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchWrite:
    """One write inside an atomic batch. kind is set, update or delete."""
    kind: str
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)


QueryCallback = Callable[[list[StoredDocument]], None]
DocumentCallback = Callable[[Optional[StoredDocument]], None]


class WatchHandle(Protocol):
    """Returned by watch_*; cancel() stops further deliveries from the store."""

    def cancel(self) -> None:
        ...


class DocumentStore(Protocol):
    """
    Protocol for the remote document store.

    Read and write methods are coroutines. watch_* return immediately
    with a handle and invoke the callback on the event loop once with
    the current result and again after every change.
    """

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        """Fetch one document, None if it does not exist."""
        ...

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document."""
        ...

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Update fields of an existing document. Raises DocumentStoreError if missing."""
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        ...

    async def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        """Apply all writes atomically."""
        ...

    def watch_query(
        self,
        collection: str,
        filters: Sequence[QueryFilter],
        on_snapshot: QueryCallback,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> WatchHandle:
        ...

    def watch_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
    ) -> WatchHandle:
        ...
