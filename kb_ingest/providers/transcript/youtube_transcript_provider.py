"""YouTube caption-track provider.

Fetches existing captions with ``youtube-transcript-api`` (a blocking
library, so calls run in :func:`asyncio.to_thread`) and title/author via
the public oEmbed endpoint with ``httpx``.

Library exceptions are classified into the
:class:`~kb_ingest.utils.errors.TranscriptFetchError` kinds the video
extractor understands.  ``NoTranscriptFound`` is flagged
``language_specific`` so the extractor knows to try other languages.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from kb_ingest.interfaces.transcript_provider import ITranscriptProvider
from kb_ingest.models.extraction import Transcript, TranscriptSegment
from kb_ingest.utils.errors import TranscriptFetchError
from kb_ingest.utils.video_urls import canonical_video_url, parse_video_id

logger = structlog.get_logger(logger_name=__name__)

_OEMBED_URL = "https://www.youtube.com/oembed"
_OEMBED_TIMEOUT = 10.0


def classify_transcript_error(exc: Exception) -> tuple[str, bool]:
    """Map a ``youtube-transcript-api`` exception to ``(kind, language_specific)``."""
    text = str(exc).lower()
    if isinstance(exc, TranscriptsDisabled):
        return "disabled", False
    if isinstance(exc, NoTranscriptFound):
        return "not_found", True
    if "region" in text or "country" in text:
        return "region_restricted", False
    if "private" in text or "sign in" in text or ("age" in text and "restrict" in text):
        return "access_denied", False
    if isinstance(exc, VideoUnavailable):
        return "not_found", False
    return "unknown", False


class YouTubeTranscriptProvider(ITranscriptProvider):
    """Caption retrieval for YouTube videos.

    Parameters
    ----------
    http_client:
        Optional shared ``httpx.AsyncClient`` for the oEmbed lookup.
    api:
        Optional pre-built ``YouTubeTranscriptApi`` (proxy configuration,
        tests).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        api: YouTubeTranscriptApi | None = None,
    ) -> None:
        self._http = http_client
        self._api = api or YouTubeTranscriptApi()

    async def fetch_transcript(self, video_url: str, language: str | None = None) -> Transcript:
        video_id = parse_video_id(video_url)
        if video_id is None:
            raise TranscriptFetchError(
                message=f"Not a recognized video URL: {video_url}",
                provider_name=self.get_provider_name(),
                kind="not_found",
            )

        languages = [language] if language else ["en"]
        try:
            fetched = await asyncio.to_thread(self._api.fetch, video_id, languages=languages)
        except CouldNotRetrieveTranscript as exc:
            kind, language_specific = classify_transcript_error(exc)
            raise TranscriptFetchError(
                message=f"Transcript unavailable for {video_id} ({kind}): {type(exc).__name__}",
                provider_name=self.get_provider_name(),
                kind=kind,
                language_specific=language_specific,
            ) from exc
        except Exception as exc:  # noqa: BLE001 -- network / parse failures from the library
            raise TranscriptFetchError(
                message=f"Transcript request failed for {video_id}: {exc}",
                provider_name=self.get_provider_name(),
                kind="unknown",
            ) from exc

        segments = [
            TranscriptSegment(
                start=max(0.0, float(snippet.start)),
                duration=max(0.0, float(snippet.duration)),
                text=snippet.text,
            )
            for snippet in fetched
            if snippet.text and snippet.text.strip()
        ]
        logger.info(
            "youtube_transcript_fetched",
            video_id=video_id,
            language=fetched.language_code,
            segments=len(segments),
            generated=fetched.is_generated,
        )
        return Transcript(
            video_id=video_id,
            language=fetched.language_code,
            segments=segments,
            is_generated=bool(fetched.is_generated),
        )

    async def fetch_video_metadata(self, video_url: str) -> dict[str, str]:
        """Look up title and author through oEmbed; never raises."""
        video_id = parse_video_id(video_url)
        if video_id is None:
            return {}
        params = {"url": canonical_video_url(video_id), "format": "json"}
        try:
            if self._http is not None:
                response = await self._http.get(_OEMBED_URL, params=params, timeout=_OEMBED_TIMEOUT)
            else:
                async with httpx.AsyncClient(timeout=_OEMBED_TIMEOUT) as client:
                    response = await client.get(_OEMBED_URL, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("youtube_oembed_unavailable", video_id=video_id, error=str(exc))
            return {}
        return {
            "title": str(payload.get("title", "")),
            "author": str(payload.get("author_name", "")),
        }

    def get_provider_name(self) -> str:
        return "youtube"
