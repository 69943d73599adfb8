"""Abstract base class for text-embedding service providers.

Concrete implementation:
:class:`~kb_ingest.providers.embedding.openai_embedding_provider.OpenAIEmbeddingProvider`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from kb_ingest.models.extraction import EmbeddingResult


class IEmbeddingProvider(ABC):
    """Contract for batch embedding services."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed one batch of texts in a single call.

        Parameters
        ----------
        texts:
            The batch.  Callers are responsible for batch sizing and for
            keeping each text inside the model's context window.

        Returns
        -------
        list[EmbeddingResult]
            One result per input, tagged with the input's position.  The
            list is **not** guaranteed to be in request order.

        Raises
        ------
        kb_ingest.utils.errors.RateLimitError
            When the provider throttles the request.
        kb_ingest.utils.errors.EmbeddingError
            For any other failure.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the length of every vector produced by this provider."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the embedding model identifier."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
