"""OpenAI-compatible text-generation provider.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When ``openai_base_url`` is configured (TogetherAI, Groq, a local vLLM
server, ...), the same adapter talks to that endpoint instead.

SDK exceptions are translated so the summarizer's retry logic only has
to know about our hierarchy: throttling becomes :class:`RateLimitError`,
timeouts / connection drops / 5xx become :class:`ProviderUnavailableError`,
and everything else becomes :class:`LLMError`.
"""

from __future__ import annotations

import openai
import structlog

from kb_ingest.config.settings import Settings
from kb_ingest.interfaces.llm_provider import ILLMProvider
from kb_ingest.utils.errors import (
    ConfigurationError,
    LLMError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """Text generation backed by an OpenAI-compatible chat completions API.

    Uses ``gpt-4o-mini`` unless ``openai_text_model`` overrides it.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.openai_timeout_seconds, connect=5.0),
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client_kwargs = client_kwargs
        self._client: openai.AsyncOpenAI | None = None
        self._model = settings.openai_text_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    def _get_client(self) -> openai.AsyncOpenAI:
        """Build the SDK client on first use so offline commands never need a key."""
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError(
                    message="OPENAI_API_KEY is not set; text generation is unavailable",
                    provider_name=self.get_provider_name(),
                )
            self._client = openai.AsyncOpenAI(**self._client_kwargs)
        return self._client

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str:
        """Generate a completion via the chat completions API."""
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.RateLimitError as exc:
            raise RateLimitError(
                message=f"{self._provider_label} rate limit: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except (openai.APIConnectionError, openai.InternalServerError) as exc:
            raise ProviderUnavailableError(
                message=f"{self._provider_label} unavailable: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=self._model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content.strip()

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
