"""Abstract base class for document record persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kb_ingest.models.document import Document, DocumentStatus


class IDocumentStore(ABC):
    """Contract for reading and updating document records.

    Concrete implementations: ``InMemoryDocumentStore``, ``SQLiteDocumentStore``.
    """

    @abstractmethod
    async def create(self, document: Document) -> Document:
        """Insert a new document record and return it."""

    @abstractmethod
    async def get(self, document_id: str) -> Document:
        """Return the document.

        Raises
        ------
        kb_ingest.utils.errors.DocumentNotFoundError
            If no such document exists.
        """

    @abstractmethod
    async def update(
        self,
        document_id: str,
        *,
        status: DocumentStatus | None = None,
        metadata: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Document:
        """Update a document and return the stored result.

        ``metadata`` is shallow-merged into the existing map: keys present
        in the patch replace stored keys, every other key is kept.
        """
