"""Abstract base class for the blob store holding uploads and extracted text.

Buckets are per organisation and named ``org-<organisation_id>-uploads``.
Concrete implementations: :class:`~kb_ingest.providers.storage.local_blob_store.LocalBlobStore`,
:class:`~kb_ingest.providers.storage.memory_store.InMemoryBlobStore`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class IBlobStore(ABC):
    """Contract for opaque byte storage."""

    @abstractmethod
    async def download(self, bucket: str, path: str) -> bytes:
        """Return the bytes stored at *path* in *bucket*.

        Raises
        ------
        kb_ingest.utils.errors.StorageError
            If the object does not exist or cannot be read.
        """

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Store *data* at *path* in *bucket*, replacing any existing object."""
