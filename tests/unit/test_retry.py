"""Unit tests for exponential backoff with jitter."""

from __future__ import annotations

import random

import pytest

from kb_ingest.utils.errors import LLMError, ProviderUnavailableError, RateLimitError
from kb_ingest.utils.retry import backoff_delay, retry_async


class _Flaky:
    def __init__(self, failures: list[Exception]) -> None:
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class TestBackoffDelay:
    def test_delay_within_capped_ceiling(self) -> None:
        rng = random.Random(0)
        for attempt in range(1, 10):
            delay = backoff_delay(attempt, base_delay=1.0, max_delay=8.0, rng=rng)
            assert 0 <= delay <= min(8.0, 2 ** (attempt - 1))

    def test_zero_base_means_no_wait(self) -> None:
        assert backoff_delay(5, base_delay=0, max_delay=0) == 0


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_transient_errors_retried(self) -> None:
        func = _Flaky([RateLimitError(), ProviderUnavailableError()])

        result = await retry_async(func, max_attempts=3, base_delay=0, max_delay=0)

        assert result == "ok"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_reraise(self) -> None:
        func = _Flaky([RateLimitError(message="first"), RateLimitError(message="second")])

        with pytest.raises(RateLimitError, match="second"):
            await retry_async(func, max_attempts=2, base_delay=0, max_delay=0)

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self) -> None:
        func = _Flaky([LLMError(message="bad prompt")])

        with pytest.raises(LLMError):
            await retry_async(func, max_attempts=5, base_delay=0, max_delay=0)

        assert func.calls == 1
