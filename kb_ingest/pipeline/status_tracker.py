"""Document status transitions, progress and error recording.

Every change of a document's lifecycle status goes through
:class:`StatusTracker`, which enforces the transition rules, merges
progress fields into the document metadata and notifies listeners.

Transition rules
----------------
Statuses are ranked::

    queued < processing < chunking < summarizing_chunks <
    summarizing_document < terminal

* a status may move forward (skipping is allowed) or stay where it is;
* ``error`` is reachable from anywhere;
* a terminal document (``completed``, ``completed_with_errors``,
  ``error``, ``processing_failed``) may be restarted at ``processing``;
* anything else raises :class:`InvalidStatusTransitionError`.

Metadata keys written
---------------------
``processing_stage``, ``progress`` (0-100, never decreasing within a
run), ``status_message``, ``last_updated_at``, ``stage_history`` (one
entry appended per status change), ``processing_error`` (the latest
:class:`ProcessingError`) and ``error_history`` (capped list).

Listeners follow the observer pattern: callbacks registered for a
document id receive ``(document_id, status, progress, message)`` after
each write.  A failing listener is logged and skipped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from kb_ingest.interfaces.document_store import IDocumentStore
from kb_ingest.models.document import (
    TERMINAL_STATUSES,
    Document,
    DocumentStatus,
    ProcessingError,
    utc_now,
)
from kb_ingest.utils.errors import InvalidStatusTransitionError

logger = structlog.get_logger(logger_name=__name__)

_RANK: dict[DocumentStatus, int] = {
    DocumentStatus.QUEUED: 0,
    DocumentStatus.PROCESSING: 1,
    DocumentStatus.CHUNKING: 2,
    DocumentStatus.SUMMARIZING_CHUNKS: 3,
    DocumentStatus.SUMMARIZING_DOCUMENT: 4,
    DocumentStatus.COMPLETED: 5,
    DocumentStatus.COMPLETED_WITH_ERRORS: 5,
    DocumentStatus.PROCESSING_FAILED: 5,
    DocumentStatus.ERROR: 5,
}

_DEFAULT_MESSAGES: dict[DocumentStatus, str] = {
    DocumentStatus.QUEUED: "Waiting to be processed",
    DocumentStatus.PROCESSING: "Extracting text",
    DocumentStatus.CHUNKING: "Splitting into chunks",
    DocumentStatus.SUMMARIZING_CHUNKS: "Summarizing chunks",
    DocumentStatus.SUMMARIZING_DOCUMENT: "Summarizing document",
    DocumentStatus.COMPLETED: "Processing complete",
    DocumentStatus.COMPLETED_WITH_ERRORS: "Processing complete with some errors",
    DocumentStatus.PROCESSING_FAILED: "Processing failed",
    DocumentStatus.ERROR: "Processing error",
}

_ERROR_HISTORY_LIMIT = 20
_STAGE_HISTORY_LIMIT = 100


def can_transition(current: DocumentStatus, new: DocumentStatus) -> bool:
    """Return ``True`` if *current* may move to *new*."""
    if new == DocumentStatus.ERROR or new == current:
        return True
    if current in TERMINAL_STATUSES:
        return new == DocumentStatus.PROCESSING
    return _RANK[new] > _RANK[current]


def is_restart(current: DocumentStatus, new: DocumentStatus) -> bool:
    return current in TERMINAL_STATUSES and new == DocumentStatus.PROCESSING


StatusListener = Callable[[str, DocumentStatus, int, str], Any]


class StatusTracker:
    """Writes document status and progress through the document store.

    Parameters
    ----------
    document_store:
        Store holding the documents being tracked.
    """

    def __init__(self, document_store: IDocumentStore) -> None:
        self._documents = document_store
        self._listeners: dict[str, list[StatusListener]] = {}
        # Serializes read-merge-write of list-valued metadata per document.
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, document_id: str) -> asyncio.Lock:
        return self._locks.setdefault(document_id, asyncio.Lock())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Document:
        return await self._documents.get(document_id)

    async def get_status(self, document_id: str) -> dict[str, Any]:
        """Return the poller-facing snapshot of a document's progress."""
        document = await self._documents.get(document_id)
        meta = document.metadata
        return {
            "document_id": document.id,
            "status": document.status.value,
            "processing_stage": meta.get("processing_stage"),
            "progress": meta.get("progress", 0),
            "status_message": meta.get("status_message", ""),
            "last_updated_at": meta.get("last_updated_at"),
            "processing_error": meta.get("processing_error"),
        }

    def check_transition(self, current: DocumentStatus, new: DocumentStatus) -> None:
        """Raise :class:`InvalidStatusTransitionError` if the move is not allowed."""
        if not can_transition(current, new):
            raise InvalidStatusTransitionError(
                message=f"Cannot move document from {current.value} to {new.value}",
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def transition(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        stage: str | None = None,
        progress: int | None = None,
        message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Move *document_id* to *status* and record progress.

        Raises
        ------
        InvalidStatusTransitionError
            When the move breaks the transition rules.
        """
        async with self._lock(document_id):
            current = await self._documents.get(document_id)
            self.check_transition(current.status, status)

            restart = is_restart(current.status, status)
            now = utc_now().isoformat()
            text = message or _DEFAULT_MESSAGES[status]
            pct = self._next_progress(current, progress, restart)

            history = [] if restart else list(current.metadata.get("stage_history", []))
            history.append({"status": status.value, "stage": stage, "at": now})

            patch: dict[str, Any] = {
                **(metadata or {}),
                "progress": pct,
                "status_message": text,
                "last_updated_at": now,
                "stage_history": history[-_STAGE_HISTORY_LIMIT:],
            }
            if stage is not None:
                patch["processing_stage"] = stage
            if restart:
                patch["processing_error"] = None

            updated = await self._documents.update(document_id, status=status, metadata=patch)

        logger.info(
            "document_status_changed",
            document_id=document_id,
            previous=current.status.value,
            status=status.value,
            stage=stage,
            progress=pct,
        )
        await self._notify(document_id, status, pct, text)
        return updated

    async def update_progress(
        self,
        document_id: str,
        stage: str,
        progress: int,
        message: str | None = None,
    ) -> bool:
        """Record in-stage progress; returns ``False`` if it would go backwards."""
        async with self._lock(document_id):
            current = await self._documents.get(document_id)
            previous = int(current.metadata.get("progress", 0) or 0)
            pct = max(0, min(100, int(progress)))
            if pct < previous:
                return False
            text = message or current.metadata.get("status_message", "")
            await self._documents.update(
                document_id,
                metadata={
                    "processing_stage": stage,
                    "progress": pct,
                    "status_message": text,
                    "last_updated_at": utc_now().isoformat(),
                },
            )
        logger.debug("document_progress", document_id=document_id, stage=stage, progress=pct)
        await self._notify(document_id, current.status, pct, text)
        return True

    async def merge_metadata(
        self,
        document_id: str,
        metadata: dict[str, Any],
        *,
        title: str | None = None,
    ) -> Document:
        """Merge stage results into the document without touching its status."""
        async with self._lock(document_id):
            return await self._documents.update(document_id, metadata=metadata, title=title)

    async def record_error(
        self,
        document_id: str,
        exc: BaseException,
        stage: str | None = None,
        status: DocumentStatus = DocumentStatus.ERROR,
    ) -> ProcessingError:
        """Store *exc* as the document's processing error and set *status*."""
        error = ProcessingError.from_exception(exc, stage=stage)
        payload = error.to_metadata()

        async with self._lock(document_id):
            current = await self._documents.get(document_id)
            history = list(current.metadata.get("error_history", []))
            history.append(payload)
            await self._documents.update(
                document_id,
                status=status,
                metadata={
                    "processing_error": payload,
                    "error_history": history[-_ERROR_HISTORY_LIMIT:],
                    "processing_stage": stage,
                    "status_message": error.user_friendly_message,
                    "last_updated_at": utc_now().isoformat(),
                },
            )

        logger.error(
            "document_processing_error",
            document_id=document_id,
            stage=stage,
            code=error.code,
            error=error.message,
            status=status.value,
        )
        await self._notify(
            document_id,
            status,
            int(current.metadata.get("progress", 0) or 0),
            error.user_friendly_message,
        )
        return error

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def register_listener(self, document_id: str, callback: StatusListener) -> None:
        """Call *callback* after every status or progress write for *document_id*."""
        listeners = self._listeners.setdefault(document_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, document_id: str, callback: StatusListener) -> None:
        listeners = self._listeners.get(document_id, [])
        if callback in listeners:
            listeners.remove(callback)

    async def _notify(
        self,
        document_id: str,
        status: DocumentStatus,
        progress: int,
        message: str,
    ) -> None:
        for callback in list(self._listeners.get(document_id, [])):
            try:
                result = callback(document_id, status, progress, message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:  # noqa: BLE001 -- one bad listener must not stop the pipeline
                logger.warning(
                    "status_listener_error",
                    document_id=document_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _next_progress(current: Document, progress: int | None, restart: bool) -> int:
        previous = 0 if restart else int(current.metadata.get("progress", 0) or 0)
        if progress is None:
            return previous
        return max(previous, max(0, min(100, int(progress))))
