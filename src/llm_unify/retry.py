"""Retry and backoff around one provider call.

Attempts are strictly sequential.  Each attempt is handed its attempt
number and is expected to build its own ``StreamingState``, so nothing
from a failed attempt leaks into the next.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import httpx

from llm_unify.config import RetrySpec
from llm_unify.errors import ApiError, RetryExhaustedError
from llm_unify.types import CancellationToken

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_status(status: int, spec: RetrySpec) -> bool:
    return status in spec.retryable_statuses


def classify(exc: BaseException, spec: RetrySpec) -> bool:
    """True when *exc* is worth another attempt.

    Transport failures (connect, read timeout, TLS, reset) always are; API
    errors are judged by status, and status-less API errors by their own
    ``retryable`` flag.  Other request errors (decoding, redirects) are not.
    """
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return True
    if isinstance(exc, ApiError):
        if exc.status is not None:
            return is_retryable_status(exc.status, spec)
        return exc.retryable
    return False


class RetryController:
    """Run an attempt function until it succeeds or attempts run out.

    Parameters
    ----------
    spec:
        Attempt count, backoff and the retryable status set.
    sleep:
        Awaitable sleep used between attempts.
    rand:
        Source of uniform ``[0, 1)`` numbers for jitter.
    """

    def __init__(
        self,
        spec: RetrySpec | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.spec = spec or RetrySpec()
        self._sleep = sleep
        self._rand = rand

    def compute_delay(self, attempt: int) -> float:
        """Backoff before the attempt following *attempt* (1-based)."""
        spec = self.spec
        delay = min(spec.base_delay * (2 ** (attempt - 1)), spec.max_delay)
        return delay * (1 + spec.jitter * (2 * self._rand() - 1))

    async def run(
        self,
        attempt_fn: Callable[[int], Awaitable[T]],
        cancel_token: CancellationToken | None = None,
    ) -> T:
        max_attempts = max(1, self.spec.max_attempts)
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            if cancel_token is not None:
                cancel_token.check()
            try:
                return await attempt_fn(attempt)
            except (httpx.RequestError, ApiError) as e:
                if not classify(e, self.spec):
                    _logger.error("Non-retryable provider error: %s", e)
                    if isinstance(e, ApiError):
                        raise
                    raise ApiError(f"{type(e).__name__}: {e}") from e
                last_error = e
                if attempt >= max_attempts:
                    break
                delay = self.compute_delay(attempt)
                _logger.warning(
                    "Provider call failed (attempt %d/%d): %s; retrying in %.2fs",
                    attempt, max_attempts, e, delay,
                )
                await self._sleep(delay)

        _logger.error(
            "Provider call failed after %d attempts: %s", max_attempts, last_error,
        )
        raise RetryExhaustedError(max_attempts, last_error or "unknown error")
