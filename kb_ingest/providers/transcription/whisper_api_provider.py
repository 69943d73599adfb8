"""OpenAI Whisper API transcription provider.

Submits an audio blob to ``audio.transcriptions.create`` and returns the
plain transcript.  Max upload size is 25 MB per request; supported formats
are mp3, mp4, mpeg, mpga, m4a, wav and webm.
"""

from __future__ import annotations

import openai
import structlog

from kb_ingest.config.settings import Settings
from kb_ingest.interfaces.transcription_provider import ITranscriptionProvider
from kb_ingest.utils.errors import ConfigurationError, TranscriptionError

logger = structlog.get_logger(logger_name=__name__)

_MAX_UPLOAD_BYTES = 25 * 1024 * 1024


class WhisperAPIProvider(ITranscriptionProvider):
    """Transcription via the OpenAI Whisper API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(max(settings.openai_timeout_seconds, 300.0), connect=5.0),
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        self._client_kwargs = client_kwargs
        self._client: openai.AsyncOpenAI | None = None
        self._model = settings.openai_transcription_model or "whisper-1"

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError(
                    message="OPENAI_API_KEY is not set; transcription is unavailable",
                    provider_name=self.get_provider_name(),
                )
            self._client = openai.AsyncOpenAI(**self._client_kwargs)
        return self._client

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        language: str | None = None,
    ) -> str:
        """Transcribe *audio* in a single request."""
        if len(audio) > _MAX_UPLOAD_BYTES:
            raise TranscriptionError(
                message=f"Audio file is {len(audio)} bytes; the limit is {_MAX_UPLOAD_BYTES}",
                provider_name=self.get_provider_name(),
                user_message="This audio file is too large to transcribe.",
                suggested_actions=["Upload a shorter or more compressed file (under 25 MB)."],
            )

        kwargs: dict = {
            "model": self._model,
            "file": (filename or "audio.mp3", audio),
            "response_format": "text",
        }
        if language:
            kwargs["language"] = language

        try:
            response = await self._get_client().audio.transcriptions.create(**kwargs)
        except openai.APIError as exc:
            raise TranscriptionError(
                message=f"Whisper API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        text = response if isinstance(response, str) else getattr(response, "text", "")
        logger.info(
            "whisper_api_transcription_complete",
            filename=filename,
            language=language,
            chars=len(text or ""),
        )
        return (text or "").strip()

    def get_provider_name(self) -> str:
        return "whisper_api"

    def supported_formats(self) -> list[str]:
        return [".mp3", ".mp4", ".mpeg", ".mpga", ".m4a", ".wav", ".webm"]
