"""Shared exercise catalog used for autocomplete and the coach's exercise filter."""

import logging
from typing import Any

from src.core.errors import ParameterValidationError

from .context import TrainingLogContext
from .documents import EXERCISES, SERVER_TIMESTAMP, QueryFilter

logger = logging.getLogger(__name__)


class DuplicateExerciseError(ParameterValidationError):
    pass


class ExerciseCatalog:

    def __init__(self, ctx: TrainingLogContext) -> None:
        self._ctx = ctx

    async def load(self) -> list[dict[str, Any]]:
        """Fetch the catalog sorted by name into state.exercises."""
        documents = self._ctx.store_or_none("load_exercises")
        if documents is None:
            return []
        docs = await documents.query(EXERCISES, order_by="name")
        exercises = [{"id": d.id, "name": d.data.get("name", "")} for d in docs]
        self._ctx.state.update(exercises=exercises)
        return exercises

    async def add(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ParameterValidationError("Exercise name is required")
        documents = self._ctx.require_store()

        if await documents.query(EXERCISES, [QueryFilter("name", "==", name)]):
            raise DuplicateExerciseError(f"Exercise already exists: {name}")

        exercise_id = await documents.add(EXERCISES, {"name": name, "createdAt": SERVER_TIMESTAMP})
        logger.info("Exercise added", extra={"exercise": name})
        await self.load()
        return exercise_id

    async def delete(self, exercise_id: str) -> None:
        """Remove a catalog entry. Records that use the name are untouched."""
        await self._ctx.require_store().delete(EXERCISES, exercise_id)
        await self.load()

    def search(self, query: str) -> list[str]:
        """Case-insensitive substring match over the loaded names."""
        names = [e["name"] for e in self._ctx.state.state.exercises]
        query = (query or "").strip().lower()
        if not query:
            return names
        return [n for n in names if query in n.lower()]
