"""Abstract base class for text-generation service providers.

Used by the summarizer for chunk, section and document summaries.
Concrete implementation: :class:`~kb_ingest.providers.llm.openai_provider.OpenAILLMProvider`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ILLMProvider(ABC):
    """Contract for chat-style text generation."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str:
        """Generate a response for a list of role-tagged messages.

        Parameters
        ----------
        messages:
            ``[{"role": "system" | "user" | "assistant", "content": ...}, ...]``
        max_tokens:
            Upper bound on the number of tokens in the response.
        temperature:
            Sampling temperature.

        Returns
        -------
        str
            The generated text, stripped.

        Raises
        ------
        kb_ingest.utils.errors.RateLimitError
            When the provider throttles the request.
        kb_ingest.utils.errors.LLMError
            For any other failure, including an empty response.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier recorded on stored summaries."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are configured."""
