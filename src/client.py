"""
Factory for the training log client.

Reads Settings, builds the document store and local storage, and
wires them into a TrainingLogApp. A document store that fails to
initialize does not stop the client: it starts degraded, with every
store-backed operation logging and returning without effect.
"""

import logging
from typing import Optional

from .config.settings import Settings, get_settings
from .core.errors import InitializationError
from .core.traininglog.app import TrainingLogApp
from .core.traininglog.context import TrainingLogContext
from .core.traininglog.documents import DocumentStore
from .core.traininglog.render import ViewSink
from .core.traininglog.state import StateStore
from .core.traininglog.utils import KeyValueStore
from .infrastructure.firestore.client import FirestoreConfig, create_document_store
from .infrastructure.local_storage.client import create_local_storage

logger = logging.getLogger(__name__)


def _build_document_store(settings: Settings) -> Optional[DocumentStore]:
    config = FirestoreConfig(
        project_id=settings.firestore_project_id,
        credentials_file=settings.firestore_credentials_file,
        credentials_json=settings.firestore_credentials_json,
    )
    try:
        return create_document_store(config=config, mock_mode=settings.firestore_mock_mode)
    except InitializationError as e:
        logger.error(
            "Document store initialization failed; continuing without it",
            extra={"error": str(e)}
        )
        return None


def create_training_log_app(
    settings: Optional[Settings] = None,
    sink: Optional[ViewSink] = None,
    documents: Optional[DocumentStore] = None,
    local: Optional[KeyValueStore] = None,
) -> TrainingLogApp:
    """
    Build a TrainingLogApp from settings.

    documents and local override the adapters the settings would pick,
    which is how tests inject in-memory stores.
    """
    settings = settings or get_settings()

    if documents is None:
        documents = _build_document_store(settings)
    if local is None:
        local = create_local_storage(settings.local_storage_path)

    ctx = TrainingLogContext(
        state=StateStore(),
        documents=documents,
        local=local,
        debounce_seconds=settings.debounce_seconds,
    )
    logger.info(
        "Training log client created",
        extra={
            "store_ready": ctx.store_ready,
            "mock_mode": settings.firestore_mock_mode,
        }
    )
    return TrainingLogApp(ctx, sink=sink)
