"""
Tests for retry with backoff and failure classification.

Run with: pytest tests/test_retry.py -v
"""

import asyncio

import httpx
import pytest

from labsync.errors import LLMError
from labsync.services.failure_classifier import FailureClass, classify_failure
from labsync.services.retry import (
    backoff_delay,
    is_quota_error,
    is_transient_error,
    parse_retry_after,
    quota_delay,
    retry_with_backoff,
)


class Flaky:
    """Fails with the given errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestErrorPredicates:
    """Quota / transient detection."""

    def test_429_is_quota(self):
        assert is_quota_error(LLMError("Too many requests", status=429))

    def test_quota_message_is_quota(self):
        assert is_quota_error(LLMError("You exceeded your current quota"))

    def test_rate_limit_message_is_quota(self):
        assert is_quota_error(ValueError("Rate limit reached for requests"))

    def test_503_is_transient(self):
        assert is_transient_error(LLMError("Service Unavailable", status=503))

    def test_overloaded_message_is_transient(self):
        assert is_transient_error(LLMError("Overloaded"))

    def test_connection_codes_are_transient(self):
        assert is_transient_error(LLMError("socket hang up", code="ECONNRESET"))
        assert is_transient_error(LLMError("timed out", code="ETIMEDOUT"))

    def test_timeouts_are_transient(self):
        assert is_transient_error(asyncio.TimeoutError())
        assert is_transient_error(httpx.ReadTimeout("read timed out"))

    def test_bad_request_is_neither(self):
        error = LLMError("Invalid request", status=400)
        assert not is_quota_error(error)
        assert not is_transient_error(error)


class TestDelays:
    """Quota hint parsing and backoff bounds."""

    def test_retry_hint_is_parsed(self):
        assert parse_retry_after(LLMError("Quota exceeded. Please retry in 12.5s.")) == 12.5

    def test_no_hint(self):
        assert parse_retry_after(LLMError("Quota exceeded")) is None

    def test_quota_delay_uses_hint(self):
        assert quota_delay(LLMError("retry in 20s", status=429)) == 20

    def test_quota_delay_defaults_to_a_minute(self):
        assert quota_delay(LLMError("quota", status=429)) == 60

    def test_quota_delay_is_capped_at_five_minutes(self):
        assert quota_delay(LLMError("retry in 900s", status=429)) == 300

    @pytest.mark.parametrize("attempt,base", [(0, 2.0), (1, 4.0), (2, 8.0), (3, 10.0), (6, 10.0)])
    def test_backoff_within_jitter_bounds(self, attempt, base):
        for _ in range(20):
            delay = backoff_delay(attempt, initial_delay=2.0, max_delay=10.0)
            assert base <= delay <= base * 1.3


class TestRetryWithBackoff:
    """End-to-end retry behaviour with a recorded sleep."""

    @pytest.mark.asyncio
    async def test_transient_errors_then_success(self):
        """Two 503s then success: three calls, result returned."""
        operation = Flaky(LLMError("unavailable", status=503), LLMError("unavailable", status=503))
        sleep = SleepRecorder()

        result = await retry_with_backoff(operation, 3, 1.0, 10.0, sleep=sleep)

        assert result == "ok"
        assert operation.calls == 3
        assert len(sleep.delays) == 2
        assert 1.0 <= sleep.delays[0] <= 1.3
        assert 2.0 <= sleep.delays[1] <= 2.6

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        """A 400 fails on the first attempt."""
        operation = Flaky(LLMError("bad request", status=400))
        sleep = SleepRecorder()

        with pytest.raises(LLMError):
            await retry_with_backoff(operation, 3, 1.0, 10.0, sleep=sleep)

        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_quota_waits_for_hinted_delay(self):
        operation = Flaky(LLMError("Quota exceeded, retry in 7s", status=429))
        sleep = SleepRecorder()

        assert await retry_with_backoff(operation, 3, 1.0, 10.0, sleep=sleep) == "ok"
        assert sleep.delays == [7.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted_raises_last_error(self):
        """max_retries=2 means three attempts in total."""
        operation = Flaky(*(LLMError(f"overloaded {i}", status=503) for i in range(5)))
        sleep = SleepRecorder()

        with pytest.raises(LLMError, match="overloaded 2"):
            await retry_with_backoff(operation, 2, 1.0, 10.0, sleep=sleep)

        assert operation.calls == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_zero_retries_calls_once(self):
        operation = Flaky(LLMError("unavailable", status=503))

        with pytest.raises(LLMError):
            await retry_with_backoff(operation, 0, 1.0, 10.0, sleep=SleepRecorder())

        assert operation.calls == 1


class TestClassifyFailure:
    """Failure buckets used by the background processor."""

    def test_quota(self):
        assert classify_failure(LLMError("quota", status=429)).failure_class == FailureClass.QUOTA

    def test_overload(self):
        assert classify_failure(LLMError("Overloaded", status=529)).failure_class == FailureClass.OVERLOAD

    def test_auth_by_status(self):
        result = classify_failure(LLMError("nope", status=401))
        assert result.failure_class == FailureClass.AUTH
        assert result.status == 401

    def test_auth_by_message(self):
        result = classify_failure(RuntimeError("Incorrect API key provided"))
        assert result.failure_class == FailureClass.AUTH
        assert result.matched_pattern == "incorrect api key"

    def test_other(self):
        assert classify_failure(ValueError("boom")).failure_class == FailureClass.OTHER
