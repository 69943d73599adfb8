"""Abstract base class for chunk persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kb_ingest.models.chunk import Chunk, ChunkFilter


class IChunkStore(ABC):
    """Contract for chunk rows.

    Patches are ``{field_name: value}`` dicts over :class:`Chunk` fields;
    a ``metadata`` entry is shallow-merged into the stored map rather than
    replacing it.

    Concrete implementations: ``InMemoryChunkStore``, ``SQLiteChunkStore``.
    """

    @abstractmethod
    async def insert_many(self, chunks: list[Chunk]) -> None:
        """Insert a batch of chunks."""

    @abstractmethod
    async def select_where(
        self,
        document_id: str,
        where: ChunkFilter | None = None,
    ) -> list[Chunk]:
        """Return the document's chunks matching *where*, ordered by index."""

    @abstractmethod
    async def update_many(self, chunk_ids: list[str], patch: dict[str, Any]) -> int:
        """Apply *patch* to every listed chunk; return the number updated."""

    @abstractmethod
    async def update_where(
        self,
        chunk_ids: list[str],
        patch: dict[str, Any],
        expected: dict[str, Any],
    ) -> list[str]:
        """Conditionally apply *patch*.

        Only chunks whose current values equal every entry of *expected*
        are updated, atomically with respect to other writers.  Keys of
        *expected* are field names or ``"metadata.<key>"`` paths.

        Returns
        -------
        list[str]
            Ids of the chunks that were updated.
        """

    @abstractmethod
    async def delete_for_document(self, document_id: str) -> int:
        """Delete every chunk of *document_id*; return the number removed."""
