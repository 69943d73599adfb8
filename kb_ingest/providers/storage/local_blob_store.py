"""Filesystem blob store.

Objects live at ``<root>/<bucket>/<path>``.  File I/O runs in a worker
thread via :func:`asyncio.to_thread` so large uploads never block the
event loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from kb_ingest.interfaces.blob_store import IBlobStore
from kb_ingest.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)


class LocalBlobStore(IBlobStore):
    """Blob store rooted at a local directory.

    Parameters
    ----------
    root:
        Directory holding one sub-directory per bucket.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _resolve(self, bucket: str, path: str) -> Path:
        bucket_dir = (self._root / bucket).resolve()
        target = (bucket_dir / path.lstrip("/")).resolve()
        if bucket_dir != self._root / bucket or not target.is_relative_to(bucket_dir):
            raise StorageError(
                message=f"Path {path!r} escapes bucket {bucket!r}",
                provider_name="local",
            )
        return target

    async def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            data = await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(
                message=f"Object {path} not found in bucket {bucket}",
                provider_name="local",
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Could not read {path} from bucket {bucket}: {exc}",
                provider_name="local",
            ) from exc
        logger.debug("blob_downloaded", bucket=bucket, path=path, size=len(data))
        return data

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        target = self._resolve(bucket, path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(
                message=f"Could not write {path} to bucket {bucket}: {exc}",
                provider_name="local",
            ) from exc
        logger.debug("blob_uploaded", bucket=bucket, path=path, size=len(data))
