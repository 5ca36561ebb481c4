"""Tests for the retry controller: classification, backoff and boundaries."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from llm_unify.config import RetrySpec
from llm_unify.errors import ApiError, CancellationError, RetryExhaustedError
from llm_unify.retry import RetryController, classify
from llm_unify.types import CancellationToken


def _failing(times: int, status: int | None = 503, result: str = "ok"):
    """Attempt function that fails *times* times, then returns *result*."""
    calls = []

    async def attempt(number: int) -> str:
        calls.append(number)
        if len(calls) <= times:
            if status is None:
                raise httpx.ConnectError("connection refused")
            raise ApiError("upstream said no", status=status)
        return result

    return attempt, calls


class TestBackoff:
    def test_exponential_without_jitter(self):
        controller = RetryController(RetrySpec(), rand=lambda: 0.5)
        assert [controller.compute_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_jitter_bounds(self):
        low = RetryController(RetrySpec(), rand=lambda: 0.0)
        high = RetryController(RetrySpec(), rand=lambda: 0.999999)
        assert low.compute_delay(1) == pytest.approx(0.75)
        assert high.compute_delay(1) == pytest.approx(1.25, abs=1e-5)
        assert low.compute_delay(4) == pytest.approx(6.0)

    def test_custom_settings(self):
        spec = RetrySpec(base_delay=0.5, max_delay=1.0, jitter=0.0)
        controller = RetryController(spec)
        assert [controller.compute_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.0]


class TestClassify:
    @pytest.mark.parametrize("status", [500, 502, 503, 504, 520, 521, 522, 523, 524, 529])
    def test_retryable_statuses(self, status):
        assert classify(ApiError("x", status=status), RetrySpec())

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413, 429])
    def test_client_errors_not_retryable(self, status):
        assert not classify(ApiError("x", status=status), RetrySpec())

    def test_transport_errors_retryable(self):
        assert classify(httpx.ConnectError("refused"), RetrySpec())
        assert classify(httpx.ReadTimeout("slow"), RetrySpec())
        assert classify(httpx.RemoteProtocolError("reset"), RetrySpec())

    def test_statusless_api_error_uses_flag(self):
        assert classify(ApiError("net", retryable=True), RetrySpec())
        assert not classify(ApiError("bad"), RetrySpec())

    def test_other_exceptions_not_retryable(self):
        assert not classify(ValueError("x"), RetrySpec())
        assert not classify(httpx.DecodingError("bad gzip"), RetrySpec())


class TestRun:
    @pytest.mark.parametrize("k", [0, 1, 2])
    async def test_succeeds_after_k_retryable_failures(self, k):
        sleep = AsyncMock()
        controller = RetryController(RetrySpec(max_attempts=3), sleep=sleep)
        attempt, calls = _failing(k, status=503)

        assert await controller.run(attempt) == "ok"
        assert calls == list(range(1, k + 2))
        assert sleep.await_count == k

    async def test_unauthorized_fails_after_one_attempt(self):
        sleep = AsyncMock()
        controller = RetryController(RetrySpec(), sleep=sleep)
        attempt, calls = _failing(5, status=401)

        with pytest.raises(ApiError) as exc_info:
            await controller.run(attempt)
        assert exc_info.value.status == 401
        assert calls == [1]
        sleep.assert_not_awaited()

    async def test_rate_limit_fails_fast(self):
        controller = RetryController(RetrySpec(), sleep=AsyncMock())
        attempt, calls = _failing(5, status=429)
        with pytest.raises(ApiError):
            await controller.run(attempt)
        assert calls == [1]

    async def test_rate_limit_retried_when_configured(self):
        spec = RetrySpec(retryable_statuses=frozenset({429}))
        controller = RetryController(spec, sleep=AsyncMock())
        attempt, calls = _failing(1, status=429)
        assert await controller.run(attempt) == "ok"
        assert calls == [1, 2]

    async def test_network_errors_retried(self):
        controller = RetryController(RetrySpec(), sleep=AsyncMock())
        attempt, calls = _failing(2, status=None)
        assert await controller.run(attempt) == "ok"
        assert len(calls) == 3

    async def test_exhaustion_raises_aggregated_error(self):
        sleep = AsyncMock()
        controller = RetryController(RetrySpec(max_attempts=3), sleep=sleep, rand=lambda: 0.5)
        attempt, calls = _failing(10, status=503)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await controller.run(attempt)

        err = exc_info.value
        assert err.attempts == 3
        assert err.last_status == 503
        assert "Service unavailable after 3 attempts" in str(err)
        assert "upstream said no" in str(err)
        assert calls == [1, 2, 3]
        # No sleep after the final attempt
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_single_attempt_configuration(self):
        controller = RetryController(RetrySpec(max_attempts=1), sleep=AsyncMock())
        attempt, calls = _failing(1, status=503)
        with pytest.raises(RetryExhaustedError):
            await controller.run(attempt)
        assert calls == [1]

    async def test_cancellation_checked_before_each_attempt(self):
        token = CancellationToken()
        sleep = AsyncMock(side_effect=lambda _delay: token.cancel())
        controller = RetryController(RetrySpec(), sleep=sleep)
        attempt, calls = _failing(5, status=503)

        with pytest.raises(CancellationError):
            await controller.run(attempt, cancel_token=token)
        assert calls == [1]

    async def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        attempt, calls = _failing(0)
        with pytest.raises(CancellationError):
            await RetryController().run(attempt, cancel_token=token)
        assert calls == []

    async def test_unexpected_exceptions_propagate(self):
        controller = RetryController(RetrySpec(), sleep=AsyncMock())

        async def attempt(number):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await controller.run(attempt)

    async def test_non_transport_request_error_wrapped(self):
        controller = RetryController(RetrySpec(), sleep=AsyncMock())
        calls = []

        async def attempt(number):
            calls.append(number)
            raise httpx.DecodingError("bad gzip")

        with pytest.raises(ApiError) as exc_info:
            await controller.run(attempt)
        assert str(exc_info.value) == "DecodingError: bad gzip"
        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, httpx.DecodingError)
        assert calls == [1]

    async def test_shared_controller_runs_concurrently(self):
        controller = RetryController(RetrySpec(max_attempts=3), sleep=AsyncMock())
        first, first_calls = _failing(2, status=503, result="first")
        second, second_calls = _failing(0, result="second")

        results = await asyncio.gather(controller.run(first), controller.run(second))

        assert results == ["first", "second"]
        assert first_calls == [1, 2, 3]
        assert second_calls == [1]
