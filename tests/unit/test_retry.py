"""Unit tests for the retry wrapper."""

import asyncio

import httpx
import pytest

from helpdesk_ai.core import ExternalServiceException, LLMException
from helpdesk_ai.shared.infrastructure.retry import (
    MODEL_CALL_POLICY, STORAGE_CALL_POLICY, RetryPolicy, call_with_retry, is_transient_error,
)


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def failing(*errors, result="ok"):
    """Coroutine factory raising the given errors in turn, then returning ``result``."""
    remaining = list(errors)
    calls = {"count": 0}

    async def call():
        calls["count"] += 1
        if remaining:
            raise remaining.pop(0)
        return result

    return call, calls


@pytest.mark.unit
class TestRetryPolicy:

    def test_exponential_backoff_is_capped(self):
        policy = RetryPolicy(max_attempts=5, initial_delay=1.0, max_delay=8.0)

        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 8.0]


@pytest.mark.unit
class TestTransientClassification:

    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        ConnectionError("reset"),
        LLMException("boom", transient=True),
        LLMException("server error", status_code=503),
        Exception("Rate limit reached for requests"),
        Exception("read ECONNRESET"),
    ])
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize("error", [
        ValueError("bad input"),
        LLMException("invalid api key", status_code=401),
        ExternalServiceException("constraint violated", service_name="Ticket Store"),
    ])
    def test_not_transient(self, error):
        assert not is_transient_error(error)

    def test_http_status_error(self):
        request = httpx.Request("POST", "https://api.example.com/v1/chat")
        too_many = httpx.HTTPStatusError("429", request=request, response=httpx.Response(429, request=request))
        bad = httpx.HTTPStatusError("400", request=request, response=httpx.Response(400, request=request))

        assert is_transient_error(too_many)
        assert not is_transient_error(bad)


@pytest.mark.unit
@pytest.mark.asyncio
class TestCallWithRetry:

    async def test_transient_failure_is_retried(self):
        sleep = FakeSleep()
        call, calls = failing(ConnectionError("reset"))

        result = await call_with_retry(call, MODEL_CALL_POLICY, "test", sleep=sleep)

        assert result == "ok"
        assert calls["count"] == 2
        assert sleep.delays == [1.0]

    async def test_non_transient_error_is_raised_immediately(self):
        sleep = FakeSleep()
        call, calls = failing(ValueError("bad"))

        with pytest.raises(ValueError):
            await call_with_retry(call, MODEL_CALL_POLICY, "test", sleep=sleep)

        assert calls["count"] == 1
        assert sleep.delays == []

    async def test_attempts_are_bounded(self):
        sleep = FakeSleep()
        call, calls = failing(TimeoutError(), TimeoutError(), TimeoutError())

        with pytest.raises(TimeoutError):
            await call_with_retry(call, STORAGE_CALL_POLICY, "test", sleep=sleep)

        assert calls["count"] == STORAGE_CALL_POLICY.max_attempts
        assert sleep.delays == [0.5]

    async def test_per_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await call_with_retry(
                slow, RetryPolicy(max_attempts=1, initial_delay=0, max_delay=0), "slow", timeout=0.01
            )
