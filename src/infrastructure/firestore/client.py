"""
Firestore document store.

FirestoreDocumentStore implements the DocumentStore protocol with
google-cloud-firestore: reads and writes go through the AsyncClient,
live watches through the sync client's on_snapshot, whose callbacks
run on SDK threads and are handed to the event loop with
call_soon_threadsafe.

InMemoryDocumentStore keeps collections in dicts and delivers watch
snapshots through the event loop the same way, so the sync layer can
be exercised without a Firebase project.
"""

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence
from uuid import uuid4

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account

from src.core.errors import InitializationError
from src.core.traininglog.documents import (
    SERVER_TIMESTAMP,
    BatchWrite,
    DocumentCallback,
    DocumentStore,
    DocumentStoreError,
    QueryCallback,
    QueryFilter,
    StoredDocument,
)

logger = logging.getLogger(__name__)


class FirestoreInitializationError(InitializationError):
    """Raised when the Firestore client cannot be created."""
    pass


@dataclass
class FirestoreConfig:
    """
    Connection settings for Firestore.

    Credentials come from service-account key JSON (credentials_json),
    then a key file, then application default credentials.
    """
    project_id: str
    credentials_file: Optional[str] = None
    credentials_json: Optional[str] = None


def _to_firestore(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value
        for key, value in data.items()
    }


def _snapshot_to_document(snapshot) -> StoredDocument:
    return StoredDocument(id=snapshot.id, data=snapshot.to_dict() or {})


class _FirestoreWatch:
    """Wraps the SDK's Watch so cancel() matches the WatchHandle protocol."""

    def __init__(self, watch) -> None:
        self._watch = watch

    def cancel(self) -> None:
        self._watch.unsubscribe()


class FirestoreDocumentStore:
    """
    Document store backed by Cloud Firestore.

    Errors from the Google API are re-raised as DocumentStoreError with
    the upstream message, so callers only handle the domain error.
    """

    def __init__(self, config: FirestoreConfig) -> None:
        try:
            credentials = None
            if config.credentials_json:
                credentials = service_account.Credentials.from_service_account_info(
                    json.loads(config.credentials_json)
                )
            elif config.credentials_file:
                credentials = service_account.Credentials.from_service_account_file(
                    config.credentials_file
                )
            self._client = firestore.AsyncClient(project=config.project_id, credentials=credentials)
            # on_snapshot is only available on the sync client
            self._watch_client = firestore.Client(project=config.project_id, credentials=credentials)
        except Exception as e:
            logger.error(
                "Failed to initialize Firestore",
                extra={"project_id": config.project_id, "error": str(e)}
            )
            raise FirestoreInitializationError(f"Firestore initialization failed: {e}")

        logger.info("Initialized Firestore client", extra={"project_id": config.project_id})

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        try:
            snapshot = await self._client.collection(collection).document(doc_id).get()
        except google_exceptions.GoogleAPIError as e:
            raise self._error("get", collection, e)
        if not snapshot.exists:
            return None
        return _snapshot_to_document(snapshot)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        try:
            await self._client.collection(collection).document(doc_id).set(_to_firestore(data), merge=merge)
        except google_exceptions.GoogleAPIError as e:
            raise self._error("set", collection, e)

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            await self._client.collection(collection).document(doc_id).update(_to_firestore(data))
        except google_exceptions.GoogleAPIError as e:
            raise self._error("update", collection, e)

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            await self._client.collection(collection).document(doc_id).delete()
        except google_exceptions.GoogleAPIError as e:
            raise self._error("delete", collection, e)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        try:
            _, ref = await self._client.collection(collection).add(_to_firestore(data))
        except google_exceptions.GoogleAPIError as e:
            raise self._error("add", collection, e)
        return ref.id

    async def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        query = self._build_query(self._client, collection, filters, order_by, limit)
        try:
            return [_snapshot_to_document(s) async for s in query.stream()]
        except google_exceptions.GoogleAPIError as e:
            raise self._error("query", collection, e)

    async def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        if not writes:
            return
        batch = self._client.batch()
        for write in writes:
            ref = self._client.collection(write.collection).document(write.doc_id)
            if write.kind == "set":
                batch.set(ref, _to_firestore(write.data))
            elif write.kind == "update":
                batch.update(ref, _to_firestore(write.data))
            elif write.kind == "delete":
                batch.delete(ref)
            else:
                raise ValueError(f"Unknown batch write kind: {write.kind}")
        try:
            await batch.commit()
        except google_exceptions.GoogleAPIError as e:
            raise self._error("commit_batch", writes[0].collection, e)

    def watch_query(
        self,
        collection: str,
        filters: Sequence[QueryFilter],
        on_snapshot: QueryCallback,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> _FirestoreWatch:
        loop = asyncio.get_running_loop()
        query = self._build_query(self._watch_client, collection, filters, order_by, limit)

        def callback(snapshots, changes, read_time) -> None:
            docs = [_snapshot_to_document(s) for s in snapshots]
            loop.call_soon_threadsafe(on_snapshot, docs)

        return _FirestoreWatch(query.on_snapshot(callback))

    def watch_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
    ) -> _FirestoreWatch:
        loop = asyncio.get_running_loop()
        ref = self._watch_client.collection(collection).document(doc_id)

        def callback(snapshots, changes, read_time) -> None:
            snapshot = snapshots[0] if snapshots else None
            doc = _snapshot_to_document(snapshot) if snapshot is not None and snapshot.exists else None
            loop.call_soon_threadsafe(on_snapshot, doc)

        return _FirestoreWatch(ref.on_snapshot(callback))

    @staticmethod
    def _build_query(client, collection, filters, order_by, limit):
        query = client.collection(collection)
        for f in filters:
            query = query.where(filter=FieldFilter(f.field, f.op, f.value))
        if order_by:
            query = query.order_by(order_by)
        if limit:
            query = query.limit(limit)
        return query

    @staticmethod
    def _error(operation: str, collection: str, error: Exception) -> DocumentStoreError:
        logger.error(
            "Firestore call failed",
            extra={"operation": operation, "collection": collection, "error": str(error)}
        )
        return DocumentStoreError(str(error))


# ---------------------------------------------------------------------------
# In-memory store for tests and local development
# ---------------------------------------------------------------------------

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "in": lambda a, b: a in b,
}


def _matches(data: dict[str, Any], filters: Sequence[QueryFilter]) -> bool:
    for f in filters:
        # documents missing the field never match, as in Firestore
        if f.field not in data:
            return False
        try:
            if not _OPERATORS[f.op](data[f.field], f.value):
                return False
        except TypeError:
            return False
    return True


class _MemoryWatch:

    def __init__(self, store: "InMemoryDocumentStore", snapshot: Callable[[], Any], callback) -> None:
        self._store = store
        self.snapshot = snapshot
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False
        self._store._watches.discard(self)


class InMemoryDocumentStore:
    """
    Dict-backed DocumentStore.

    Watch callbacks are queued on the running loop after every write,
    like SDK callbacks marshalled from a listener thread. A delivery
    queued before cancel() still runs; staleness is the subscriber's
    concern. Set fail_writes to make every write raise.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._watches: set[_MemoryWatch] = set()
        self._pending = 0
        self._last_timestamp = datetime.now(timezone.utc)
        self.fail_writes = False
        logger.info("Initialized in-memory document store")

    @property
    def active_watch_count(self) -> int:
        return len(self._watches)

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        """Raw contents of a collection, for test assertions."""
        return copy.deepcopy(self._collections.get(collection, {}))

    async def settle(self) -> None:
        """Let queued watch deliveries run."""
        for _ in range(100):
            if not self._pending:
                return
            await asyncio.sleep(0)

    # Reads -----------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return StoredDocument(id=doc_id, data=copy.deepcopy(data))

    async def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        return self._run_query(collection, filters, order_by, limit)

    def _run_query(self, collection, filters, order_by=None, limit=None) -> list[StoredDocument]:
        items = [
            (doc_id, data)
            for doc_id, data in self._collections.get(collection, {}).items()
            if _matches(data, filters)
        ]
        if order_by:
            items = [item for item in items if order_by in item[1]]
            items.sort(key=lambda item: item[1][order_by])
        if limit:
            items = items[:limit]
        return [StoredDocument(id=doc_id, data=copy.deepcopy(data)) for doc_id, data in items]

    # Writes ----------------------------------------------------------------

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        self._check_writable()
        docs = self._collections.setdefault(collection, {})
        resolved = self._resolve(data)
        if merge and doc_id in docs:
            docs[doc_id].update(resolved)
        else:
            docs[doc_id] = resolved
        self._notify()

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._check_writable()
        self._require_existing(collection, doc_id)
        self._collections[collection][doc_id].update(self._resolve(data))
        self._notify()

    async def delete(self, collection: str, doc_id: str) -> None:
        self._check_writable()
        self._collections.get(collection, {}).pop(doc_id, None)
        self._notify()

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid4().hex[:20]
        await self.set(collection, doc_id, data)
        return doc_id

    async def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        self._check_writable()
        for write in writes:
            if write.kind == "update":
                self._require_existing(write.collection, write.doc_id)
            elif write.kind not in ("set", "delete"):
                raise ValueError(f"Unknown batch write kind: {write.kind}")

        for write in writes:
            docs = self._collections.setdefault(write.collection, {})
            if write.kind == "set":
                docs[write.doc_id] = self._resolve(write.data)
            elif write.kind == "update":
                docs[write.doc_id].update(self._resolve(write.data))
            else:
                docs.pop(write.doc_id, None)
        self._notify()

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise DocumentStoreError("Simulated write failure")

    def _require_existing(self, collection: str, doc_id: str) -> None:
        if doc_id not in self._collections.get(collection, {}):
            raise DocumentStoreError(f"No document to update: {collection}/{doc_id}")

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        resolved = copy.deepcopy({k: v for k, v in data.items() if v is not SERVER_TIMESTAMP})
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                resolved[key] = self._next_timestamp()
        return resolved

    def _next_timestamp(self) -> datetime:
        # strictly increasing so ordering by timestamp is deterministic
        now = datetime.now(timezone.utc)
        if now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    # Watches ---------------------------------------------------------------

    def watch_query(
        self,
        collection: str,
        filters: Sequence[QueryFilter],
        on_snapshot: QueryCallback,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> _MemoryWatch:
        filters = list(filters)
        watch = _MemoryWatch(
            self,
            lambda: self._run_query(collection, filters, order_by, limit),
            on_snapshot,
        )
        self._watches.add(watch)
        self._deliver(watch)
        return watch

    def watch_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
    ) -> _MemoryWatch:
        def snapshot() -> Optional[StoredDocument]:
            data = self._collections.get(collection, {}).get(doc_id)
            return StoredDocument(id=doc_id, data=copy.deepcopy(data)) if data is not None else None

        watch = _MemoryWatch(self, snapshot, on_snapshot)
        self._watches.add(watch)
        self._deliver(watch)
        return watch

    def _notify(self) -> None:
        for watch in list(self._watches):
            self._deliver(watch)

    def _deliver(self, watch: _MemoryWatch) -> None:
        snapshot = watch.snapshot()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            watch.callback(snapshot)
            return

        self._pending += 1

        def run() -> None:
            self._pending -= 1
            watch.callback(snapshot)

        loop.call_soon(run)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_document_store(
    config: Optional[FirestoreConfig] = None,
    mock_mode: bool = False,
) -> DocumentStore:
    """
    Create a document store.

    Raises FirestoreInitializationError when the real client cannot be
    built; callers decide whether to continue without a store.
    """
    if mock_mode:
        logger.info("Creating in-memory document store")
        return InMemoryDocumentStore()

    if config is None or not config.project_id:
        raise FirestoreInitializationError("FIRESTORE_PROJECT_ID is required when not in mock mode")

    return FirestoreDocumentStore(config)
