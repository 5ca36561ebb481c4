"""Ordered pub/sub for normalized stream chunks.

Unlike a fan-out event bus, delivery here is strictly sequential: chunk N
reaches every handler before chunk N+1 is looked at, because persistence
sinks append text in arrival order.
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Callable

from llm_unify.types import ChunkType, StreamChunk

_logger = logging.getLogger(__name__)

# Sentinel used for wildcard subscriptions (receive all chunks)
_WILDCARD = "*"

# Type alias for handlers (sync or async callables taking a StreamChunk)
Handler = Callable[[StreamChunk], Any]


class ChunkBus:
    """Deliver chunks to subscribers, coalescing bursts of content.

    Consecutive ``content`` chunks arriving within ``throttle_ms`` of the
    last delivered content are joined and delivered later: either with the
    next content chunk outside the window, before the next non-content
    chunk, or on :meth:`flush`.  ``throttle_ms=0`` delivers every chunk.

    An instance is itself a valid ``on_chunk`` callback.
    """

    def __init__(
        self,
        throttle_ms: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._throttle = max(0, throttle_ms) / 1000
        self._clock = clock
        self._pending: list[str] = []
        self._last_content_at: float | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(self, chunk_type: ChunkType | str, handler: Handler) -> None:
        """Register *handler* for *chunk_type* (or ``"*"`` for all)."""
        self._handlers.setdefault(self._key(chunk_type), []).append(handler)

    def unsubscribe(self, chunk_type: ChunkType | str, handler: Handler) -> None:
        handlers = self._handlers.get(self._key(chunk_type), [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    async def publish(self, chunk: StreamChunk) -> None:
        if chunk.type is ChunkType.CONTENT:
            now = self._clock()
            if (
                self._throttle > 0
                and self._last_content_at is not None
                and now - self._last_content_at < self._throttle
            ):
                self._pending.append(chunk.content)
                return
            text = "".join(self._pending) + chunk.content
            self._pending.clear()
            self._last_content_at = now
            await self._dispatch(StreamChunk(ChunkType.CONTENT, content=text))
            return

        await self.flush()
        await self._dispatch(chunk)

    async def __call__(self, chunk: StreamChunk) -> None:
        await self.publish(chunk)

    async def flush(self) -> None:
        """Deliver any coalesced content still held back."""
        if not self._pending:
            return
        text = "".join(self._pending)
        self._pending.clear()
        self._last_content_at = self._clock()
        await self._dispatch(StreamChunk(ChunkType.CONTENT, content=text))

    def clear(self) -> None:
        """Remove all handlers and drop pending content."""
        self._handlers.clear()
        self._pending.clear()
        self._last_content_at = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _key(chunk_type: ChunkType | str) -> str:
        if isinstance(chunk_type, ChunkType):
            return chunk_type.value
        return str(chunk_type)

    async def _dispatch(self, chunk: StreamChunk) -> None:
        handlers = list(self._handlers.get(chunk.type.value, []))
        handlers.extend(self._handlers.get(_WILDCARD, []))
        for handler in handlers:
            await self._call_handler(handler, chunk)

    @staticmethod
    async def _call_handler(handler: Handler, chunk: StreamChunk) -> None:
        try:
            result = handler(chunk)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "ChunkBus handler %s raised for chunk %s",
                getattr(handler, "__name__", handler),
                chunk.type.value,
            )
