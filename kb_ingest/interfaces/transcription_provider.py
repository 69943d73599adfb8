"""Abstract base class for speech-to-text providers.

Concrete implementation:
:class:`~kb_ingest.providers.transcription.whisper_api_provider.WhisperAPIProvider`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ITranscriptionProvider(ABC):
    """Contract for audio transcription services."""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        language: str | None = None,
    ) -> str:
        """Return the transcript text for an audio blob.

        Parameters
        ----------
        audio:
            Raw audio bytes.
        filename:
            Original file name; services use the extension to detect format.
        language:
            Optional ISO-639-1 hint.

        Raises
        ------
        kb_ingest.utils.errors.TranscriptionError
            If the service rejects or fails the request.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def supported_formats(self) -> list[str]:
        """Return supported file extensions (e.g. ``[".mp3", ".wav"]``)."""
