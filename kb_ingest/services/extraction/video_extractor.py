"""Video extraction from existing caption tracks.

Captions are requested in the default language first, then each fallback
language in turn.  A failure tied to the language (``not_found`` with
``language_specific``) or an ``unknown`` failure moves on to the next
language.  Failures that concern the video itself (captions disabled,
private/age-restricted, region-locked) stop immediately because no other
language can succeed.
"""

from __future__ import annotations

import structlog

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.interfaces.transcript_provider import ITranscriptProvider
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind, Transcript
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.utils.errors import MissingLocatorError, TranscriptFetchError
from kb_ingest.utils.video_urls import canonical_video_url, parse_video_id

logger = structlog.get_logger(logger_name=__name__)

# Failure kinds that no other caption language can fix.
_TERMINAL_KINDS = frozenset({"disabled", "access_denied", "region_restricted"})


def format_timestamp(seconds: float) -> str:
    """Render *seconds* as ``MM:SS``, or ``H:MM:SS`` from one hour up."""
    total = int(max(0.0, seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def render_transcript(
    transcript: Transcript,
    *,
    title: str = "",
    author: str = "",
    source_url: str = "",
) -> str:
    """Render a transcript as a header block followed by ``[MM:SS] text`` lines."""
    header: list[str] = []
    if title:
        header.append(f"# {title}")
    byline = []
    if author:
        byline.append(f"Channel: {author}")
    if source_url:
        byline.append(f"Source: {source_url}")
    if byline:
        header.append("\n".join(byline))
    header.append("## Transcript")

    lines = [
        f"[{format_timestamp(segment.start)}] {' '.join(segment.text.split())}"
        for segment in transcript.segments
    ]
    return "\n\n".join(header) + "\n\n" + "\n\n".join(lines)


class VideoExtractor(SourceExtractor):
    """Turns a video URL into timestamped transcript text.

    Parameters
    ----------
    transcript_provider:
        Caption source.
    default_language:
        First caption language requested.
    fallback_languages:
        Languages tried, in order, after the default one.
    """

    kind = SourceKind.VIDEO
    needs_blob = False
    quality_user_message = "The transcript for this video is too short to summarize."
    quality_actions = ["Try a longer video.", "Upload the audio file instead."]

    def __init__(
        self,
        transcript_provider: ITranscriptProvider,
        default_language: str = "en",
        fallback_languages: list[str] | None = None,
    ) -> None:
        self._provider = transcript_provider
        self._languages: list[str] = []
        for language in [default_language, *(fallback_languages or [])]:
            if language and language not in self._languages:
                self._languages.append(language)

    async def extract(
        self,
        document: Document,
        data: bytes | None,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        url = document.source_url
        if not url:
            raise MissingLocatorError(message=f"Document {document.id} has no video URL")

        video_id = parse_video_id(url)
        transcript = await self._fetch_any_language(url)
        await progress.report(PipelineStage.EXTRACTION, 1, 2)

        info = await self._provider.fetch_video_metadata(url)
        title = info.get("title") or document.title
        author = info.get("author", "")
        source = canonical_video_url(video_id) if video_id else url

        text = render_transcript(transcript, title=title, author=author, source_url=source)
        await progress.report(PipelineStage.EXTRACTION, 2, 2)

        logger.info(
            "video_transcript_extracted",
            document_id=document.id,
            video_id=transcript.video_id,
            language=transcript.language,
            segments=len(transcript.segments),
        )
        return ExtractionResult(
            text=text,
            source_kind=SourceKind.VIDEO,
            metadata={
                "type": "youtube_video",
                "video_id": transcript.video_id,
                "title": title,
                "author": author,
                "source_url": source,
                "transcript_language": transcript.language,
                "transcript_generated": transcript.is_generated,
                "segment_count": len(transcript.segments),
                "has_transcript": True,
            },
        )

    async def _fetch_any_language(self, url: str) -> Transcript:
        last_error: TranscriptFetchError | None = None
        for language in self._languages or [None]:
            try:
                transcript = await self._provider.fetch_transcript(url, language=language)
            except TranscriptFetchError as exc:
                last_error = exc
                logger.info(
                    "video_transcript_language_failed",
                    url=url,
                    language=language,
                    kind=exc.kind,
                )
                if exc.kind in _TERMINAL_KINDS:
                    raise
                continue

            if transcript.segments:
                return transcript
            last_error = TranscriptFetchError(
                message=f"Transcript for {url} in {language!r} has no text",
                provider_name=self._provider.get_provider_name(),
                kind="not_found",
                language_specific=True,
            )

        if last_error is None:
            raise TranscriptFetchError(
                message=f"No transcript language could be tried for {url}",
                provider_name=self._provider.get_provider_name(),
                kind="unknown",
            )
        raise last_error
