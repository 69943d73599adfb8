"""Abstract base class for video caption/transcript retrieval.

Concrete implementation:
:class:`~kb_ingest.providers.transcript.youtube_transcript_provider.YouTubeTranscriptProvider`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from kb_ingest.models.extraction import Transcript


class ITranscriptProvider(ABC):
    """Contract for fetching an existing caption track for a video."""

    @abstractmethod
    async def fetch_transcript(self, video_url: str, language: str | None = None) -> Transcript:
        """Return the timed caption segments for *video_url*.

        Parameters
        ----------
        video_url:
            Any recognized watch/share/embed URL for the video.
        language:
            Preferred caption language; ``None`` lets the provider choose.

        Raises
        ------
        kb_ingest.utils.errors.TranscriptFetchError
            With ``kind`` set to ``disabled``, ``access_denied``,
            ``not_found``, ``region_restricted`` or ``unknown``.
        """

    @abstractmethod
    async def fetch_video_metadata(self, video_url: str) -> dict[str, str]:
        """Return best-effort ``{"title": ..., "author": ...}`` for the video.

        Never raises; returns an empty dict when metadata is unavailable.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
