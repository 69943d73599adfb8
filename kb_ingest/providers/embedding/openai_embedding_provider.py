"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
The embeddings endpoint tags every vector with the position of its input
(``item.index``); results are returned with that tag intact and in
whatever order the API sent them.  Reordering is the embedder's job.
"""

from __future__ import annotations

import openai
import structlog

from kb_ingest.config.settings import Settings
from kb_ingest.interfaces.embedding_provider import IEmbeddingProvider
from kb_ingest.models.extraction import EmbeddingResult
from kb_ingest.utils.errors import (
    ConfigurationError,
    EmbeddingError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.
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
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError(
                    message="OPENAI_API_KEY is not set; embeddings are unavailable",
                    provider_name=self.get_provider_name(),
                )
            self._client = openai.AsyncOpenAI(**self._client_kwargs)
        return self._client

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed one batch; results keep the API's ``index`` tags and order."""
        if not texts:
            return []

        try:
            response = await self._get_client().embeddings.create(input=texts, model=self._model)
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
            raise EmbeddingError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        results = [
            EmbeddingResult(index=item.index, vector=list(item.embedding)) for item in response.data
        ]
        logger.info(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return results

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
