"""Common contract for provider streaming adapters.

One adapter instance serves many calls for one provider account.  Per-call
state lives in the ``StreamingState`` returned by :meth:`StreamAdapter.start`
and is threaded explicitly through :meth:`on_chunk` and :meth:`finish`;
the adapter itself holds only read-only configuration.
"""

from __future__ import annotations

import abc
import copy
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from llm_unify.cache import CacheBreakpointPlanner
from llm_unify.config import ProviderSpec, UnifyConfig
from llm_unify.errors import translate_api_error
from llm_unify.standardize import from_streaming_state
from llm_unify.stream import sse
from llm_unify.types import (
    CanonicalResponse,
    ChunkType,
    ProviderType,
    StreamChunk,
    StreamingState,
    ToolOutcome,
    UsageInfo,
)

_logger = logging.getLogger(__name__)

# Receives each normalized chunk; may be sync or async.  Awaited before the
# next line is processed, so a slow consumer slows the read loop.
Emit = Callable[[StreamChunk], "Awaitable[None] | None"]


async def deliver(emit: Emit | None, chunk: StreamChunk) -> None:
    if emit is None:
        return
    result = emit(chunk)
    if inspect.isawaitable(result):
        await result


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

def normalize_tools(tools: Sequence[Mapping[str, Any]] | None) -> list[dict[str, Any]]:
    """Validate tool definitions and default missing descriptions.

    Input items are ``{name, description, input_schema}``; ``parameters``
    is accepted in place of ``input_schema``.  Nameless tools are dropped.
    """
    result: list[dict[str, Any]] = []
    for tool in tools or ():
        name = tool.get("name")
        if not name:
            _logger.warning("Skipping tool definition without a name: %r", tool)
            continue
        description = tool.get("description")
        if not description:
            description = f"Tool for {name}"
            _logger.warning(
                "Tool %s has no description; using default %r", name, description,
            )
        schema = tool.get("input_schema") or tool.get("parameters") or {
            "type": "object", "properties": {},
        }
        result.append(
            {"name": name, "description": description, "input_schema": schema}
        )
    return result


# ---------------------------------------------------------------------------
# Request log sanitisation
# ---------------------------------------------------------------------------

_INLINE_LIMIT = 100
_TEXT_LIMIT = 500


def _clip(value: str, keep: int) -> str:
    return f"{value[:keep]}... [TRUNCATED {len(value)} chars]"


def sanitize_for_logging(body: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of a request body with bulky inline payloads shortened."""
    sanitized = copy.deepcopy(dict(body))
    containers = list(sanitized.get("messages") or [])
    if isinstance(sanitized.get("system"), list):
        containers.append({"content": sanitized["system"]})

    for message in containers:
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            continue
        for item in content:
            if not isinstance(item, dict):
                continue
            kind = item.get("type")
            if kind == "file" and isinstance(item.get("file"), dict):
                data = item["file"].get("file_data")
                if isinstance(data, str) and len(data) > _INLINE_LIMIT:
                    item["file"]["file_data"] = _clip(data, 50)
            elif kind == "image_url" and isinstance(item.get("image_url"), dict):
                url = item["image_url"].get("url")
                if isinstance(url, str) and len(url) > _INLINE_LIMIT:
                    item["image_url"]["url"] = _clip(url, 50)
            elif kind == "image" and isinstance(item.get("source"), dict):
                data = item["source"].get("data")
                if isinstance(data, str) and len(data) > _INLINE_LIMIT:
                    item["source"]["data"] = _clip(data, 50)
            elif kind == "text":
                text = item.get("text")
                if isinstance(text, str) and len(text) > _TEXT_LIMIT:
                    item["text"] = _clip(text, 200)
                    if item.get("cache_control"):
                        item["text"] += " [HAS CACHE_CONTROL]"
    return sanitized


# ---------------------------------------------------------------------------
# Adapter base
# ---------------------------------------------------------------------------

class StreamAdapter(abc.ABC):
    """Wire-format adapter for one provider.

    Subclasses set :attr:`provider_type` and :attr:`path`, build request
    bodies, and interpret one decoded SSE payload at a time in
    :meth:`handle_event`.
    """

    provider_type: ProviderType
    path: str = "chat/completions"
    label: str = "PROVIDER"
    # Roles whose content must be a plain string in requests
    string_only_roles: tuple[str, ...] = ("tool",)
    supports_cache: bool = True

    def __init__(self, spec: ProviderSpec, config: UnifyConfig | None = None) -> None:
        self.spec = spec
        self.config = config or UnifyConfig()
        cache = self.config.cache
        self.planner = CacheBreakpointPlanner(
            max_markers=cache.max_markers,
            enabled=cache.enabled and self.supports_cache,
            string_only_roles=self.string_only_roles,
        )

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self.spec.url

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.spec.api_key}",
        }

    def max_tokens(self) -> int:
        return self.spec.max_tokens or self.config.default_max_tokens

    @abc.abstractmethod
    def build_request(
        self,
        system_messages: Sequence[Any],
        history: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        model: str | None = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        """Return the JSON body for one call."""

    @abc.abstractmethod
    def format_tools(self, tools: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Convert normalized tool definitions to the provider format."""

    @abc.abstractmethod
    def format_tool_turn(
        self,
        response: CanonicalResponse,
        outcomes: Sequence[tuple[str, ToolOutcome]],
    ) -> list[dict[str, Any]]:
        """History entries for an assistant tool-call turn and its results.

        *outcomes* pairs each tool call id with its outcome, in call order.
        """

    def log_request(self, body: Mapping[str, Any]) -> None:
        _logger.info(
            "%s request - model: %s, messages: %d, tools: %d, stream: %s",
            self.label, body.get("model"), len(body.get("messages") or []),
            len(body.get("tools") or []), body.get("stream", False),
        )
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug(
                "%s request body: %s",
                self.label, json.dumps(sanitize_for_logging(body), indent=2),
            )

    # ------------------------------------------------------------------
    # Streaming side
    # ------------------------------------------------------------------

    def start(self) -> StreamingState:
        """Fresh state for one attempt."""
        return StreamingState()

    async def on_chunk(
        self, raw: bytes | str, state: StreamingState, emit: Emit | None = None,
    ) -> None:
        """Feed one network chunk; dispatch every line it completes in order."""
        for event in sse.feed(raw, state):
            await self.handle_event(event, state, emit)

    async def finish(
        self,
        state: StreamingState,
        emit: Emit | None = None,
        requested_model: str = "",
    ) -> CanonicalResponse:
        """Process the unterminated tail and build the final response."""
        for event in sse.flush(state):
            await self.handle_event(event, state, emit)
        self.log_usage(state.usage)
        return from_streaming_state(state, requested_model)

    @abc.abstractmethod
    async def handle_event(
        self,
        event: Mapping[str, Any],
        state: StreamingState,
        emit: Emit | None,
    ) -> None:
        """Apply one decoded SSE payload to *state*."""

    @abc.abstractmethod
    def standardize(self, payload: Mapping[str, Any]) -> CanonicalResponse:
        """Map a non-streaming response body."""

    # ------------------------------------------------------------------
    # Shared helpers for subclasses
    # ------------------------------------------------------------------

    async def emit_content(
        self, text: str, state: StreamingState, emit: Emit | None,
    ) -> None:
        if not text or not state.accepts_content:
            return
        state.accumulated_content += text
        await deliver(emit, StreamChunk(ChunkType.CONTENT, content=text))

    async def emit_tool_calls(self, state: StreamingState, emit: Emit | None) -> None:
        """Hand the caller the current merged tool-call set, in index order."""
        snapshot = tuple(state.tool_calls[i].to_dict() for i in sorted(state.tool_calls))
        await deliver(emit, StreamChunk(ChunkType.TOOL_CALL_UPDATE, tool_calls=snapshot))

    async def emit_finish(self, state: StreamingState, emit: Emit | None) -> None:
        await deliver(
            emit, StreamChunk(ChunkType.FINISH, finish_reason=state.finish_reason),
        )

    async def emit_error(
        self,
        message: str,
        state: StreamingState,
        emit: Emit | None,
        code: Any = None,
    ) -> None:
        """Record an in-band error and hand a translated chunk to the caller."""
        _logger.error("[%s API ERROR] Code: %s, Message: %s", self.label, code, message)
        state.last_error = message
        friendly = translate_api_error(message)
        await deliver(
            emit,
            StreamChunk(
                ChunkType.ERROR,
                error_message=friendly.message,
                raw_error=message,
                error_code=code,
            ),
        )

    def log_usage(self, usage: UsageInfo | None) -> None:
        if usage is None:
            _logger.info("%s streaming complete - no usage reported", self.label)
            return
        _logger.info(
            "[%s USAGE] prompt=%d, completion=%d, total=%d",
            self.label, usage.prompt_tokens, usage.completion_tokens,
            usage.total_tokens,
        )
        if usage.has_cache_data:
            _logger.info(
                "[%s CACHE] creation=%d, read=%d, hit_rate=%.1f%%",
                self.label, usage.cache_creation_input_tokens,
                usage.cache_read_input_tokens, usage.cache_hit_rate,
            )
