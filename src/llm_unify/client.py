"""Async client presenting one response contract over every provider.

Uses a single shared ``httpx.AsyncClient`` per instance; each call builds
its own request/response cycle, so concurrent calls need no locking.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Sequence

import httpx

from llm_unify.config import UnifyConfig
from llm_unify.errors import ApiError, ConfigError, extract_error_message
from llm_unify.providers import create_adapter, normalize_tools
from llm_unify.providers.base import Emit
from llm_unify.retry import RetryController
from llm_unify.types import CancellationToken, CanonicalResponse

_logger = logging.getLogger(__name__)


class UnifiedLLMClient:
    """Streaming and non-streaming chat for the configured provider.

    Parameters
    ----------
    config:
        Loaded configuration; defaults apply when omitted.
    provider:
        Name of the provider profile to use; the active one when omitted.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    retry:
        Retry controller override.
    """

    def __init__(
        self,
        config: UnifyConfig | None = None,
        provider: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry: RetryController | None = None,
    ) -> None:
        self.config = config or UnifyConfig()
        self.spec = self.config.provider_spec(provider)
        if not self.spec.api_key:
            raise ConfigError(
                f"No API key configured for provider {self.spec.provider_type.value!r}"
            )
        self.adapter = create_adapter(self.spec, self.config)
        self.retry = retry or RetryController(self.config.retry)

        self._client = httpx.AsyncClient(
            base_url=self.adapter.base_url,
            headers=self.adapter.headers(),
            timeout=httpx.Timeout(
                self.config.read_timeout, connect=self.config.connect_timeout,
            ),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def stream_chat(
        self,
        system_messages: Sequence[Any],
        history: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        model: str | None = None,
        on_chunk: Emit | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CanonicalResponse:
        """Stream one completion, handing normalized chunks to *on_chunk*.

        In-band provider errors, and connections lost after body bytes
        arrived, end the stream with ``finish_reason == "error"`` after an
        error chunk; they are not raised.  Failures before the body and
        non-2xx statuses go through the retry controller and surface as
        :class:`ApiError` / :class:`RetryExhaustedError`.
        """
        body = self.adapter.build_request(
            system_messages, list(history), normalize_tools(tools),
            model=model, stream=True,
        )
        self.adapter.log_request(body)
        requested_model = body["model"]
        start = time.monotonic()

        async def attempt(number: int) -> CanonicalResponse:
            state = self.adapter.start()
            received = False
            async with self._client.stream(
                "POST", self.adapter.path, json=body,
            ) as resp:
                if not resp.is_success:
                    raise self._api_error(resp.status_code, await resp.aread())
                try:
                    async for chunk in resp.aiter_bytes():
                        received = True
                        await self.adapter.on_chunk(chunk, state, on_chunk)
                except httpx.RequestError as e:
                    # Chunks already reached the caller; retrying would repeat them
                    if not received:
                        raise
                    if state.content_complete:
                        _logger.warning(
                            "%s connection closed after stream end: %s",
                            self.adapter.label, e,
                        )
                    else:
                        await self.adapter.emit_error(
                            f"Connection lost mid-stream: {type(e).__name__}: {e}",
                            state, on_chunk,
                        )
            return await self.adapter.finish(state, on_chunk, requested_model)

        response = await self.retry.run(attempt, cancel_token)
        _logger.info(
            "%s stream finished in %.0fms (model=%s, finish=%s, tool_calls=%d)",
            self.adapter.label, (time.monotonic() - start) * 1000,
            response.model, response.finish_reason, len(response.tool_calls),
        )
        return response

    # ------------------------------------------------------------------
    # Non-streaming chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        system_messages: Sequence[Any],
        history: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        model: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CanonicalResponse:
        """Send one non-streaming request and standardize the payload."""
        body = self.adapter.build_request(
            system_messages, list(history), normalize_tools(tools),
            model=model, stream=False,
        )
        self.adapter.log_request(body)

        async def attempt(number: int) -> CanonicalResponse:
            resp = await self._client.post(self.adapter.path, json=body)
            if not resp.is_success:
                raise self._api_error(resp.status_code, resp.content)
            try:
                payload = resp.json()
            except ValueError:
                raise ApiError(
                    "Invalid JSON in provider response", status=resp.status_code,
                ) from None
            if not isinstance(payload, Mapping):
                raise ApiError(
                    "Unexpected provider response shape", status=resp.status_code,
                )
            return self.adapter.standardize(payload)

        response = await self.retry.run(attempt, cancel_token)
        self.adapter.log_usage(response.usage)
        return response

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _api_error(self, status: int, raw: bytes) -> ApiError:
        detail = extract_error_message(raw) or f"HTTP {status}"
        retryable = status in self.config.retry.retryable_statuses
        _logger.error(
            "%s API error (status %d, retryable=%s): %s",
            self.adapter.label, status, retryable, detail,
        )
        return ApiError(detail, status=status, retryable=retryable)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> UnifiedLLMClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
