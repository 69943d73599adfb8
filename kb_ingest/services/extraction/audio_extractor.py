"""Audio extraction through a speech-to-text provider."""

from __future__ import annotations

from pathlib import PurePosixPath

import structlog

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.interfaces.transcription_provider import ITranscriptionProvider
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.utils.errors import ExtractionError, TranscriptionError

logger = structlog.get_logger(logger_name=__name__)


class AudioExtractor(SourceExtractor):
    """Transcribes an uploaded audio blob in a single provider call."""

    kind = SourceKind.AUDIO
    needs_blob = True
    quality_user_message = "We couldn't hear enough speech in this recording."
    quality_actions = ["Check the recording contains speech.", "Try a clearer recording."]

    def __init__(self, provider: ITranscriptionProvider, language: str | None = None) -> None:
        self._provider = provider
        self._language = language or None

    async def extract(
        self,
        document: Document,
        data: bytes | None,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        if not data:
            raise ExtractionError(message=f"Audio blob for {document.id} is empty")

        filename = PurePosixPath(document.storage_path or "audio").name or "audio"
        await progress.report(PipelineStage.EXTRACTION, 0, 1)
        text = await self._provider.transcribe(data, filename, language=self._language)
        if not text or not text.strip():
            raise TranscriptionError(
                message=f"Transcription of {filename} returned no text",
                provider_name=self._provider.get_provider_name(),
            )
        await progress.report(PipelineStage.EXTRACTION, 1, 1)

        logger.info(
            "audio_transcribed",
            document_id=document.id,
            filename=filename,
            bytes=len(data),
            chars=len(text),
        )
        return ExtractionResult(
            text=text.strip(),
            source_kind=SourceKind.AUDIO,
            metadata={
                "type": "audio",
                "filename": filename,
                "audio_bytes": len(data),
                "transcription_provider": self._provider.get_provider_name(),
            },
        )
