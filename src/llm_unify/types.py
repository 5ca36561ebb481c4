"""Shared data types for llm-unify."""

from __future__ import annotations

import codecs
import enum
from dataclasses import dataclass, field
from typing import Any, Mapping

from llm_unify.errors import CancellationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProviderType(enum.Enum):
    """Supported upstream LLM APIs."""

    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"
    MISTRAL = "mistral"
    SCALEWAY = "scaleway"


class ChunkType(enum.Enum):
    """Normalized chunk events emitted while streaming."""

    CONTENT = "content"
    TOOL_CALL_UPDATE = "tool_call_update"
    FINISH = "finish"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Streaming types
# ---------------------------------------------------------------------------

@dataclass
class FunctionFragment:
    """The ``function`` part of a tool call being assembled."""

    name: str | None = None
    arguments: str = ""


@dataclass
class PartialToolCall:
    """A tool call whose arguments may still be arriving in pieces."""

    index: int
    id: str | None = None
    type: str = "function"
    function: FunctionFragment = field(default_factory=FunctionFragment)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }


@dataclass(frozen=True)
class UsageInfo:
    """Token usage, normalized across provider key names."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(cls, usage: Mapping[str, Any] | None) -> UsageInfo | None:
        """Build from a provider ``usage`` object.  Returns None for empty input."""
        if not usage:
            return None

        prompt = _int(usage.get("prompt_tokens", usage.get("input_tokens")))
        completion = _int(
            usage.get("completion_tokens", usage.get("output_tokens"))
        )
        total = _int(usage.get("total_tokens")) or prompt + completion

        details = usage.get("prompt_tokens_details")
        if not isinstance(details, Mapping):
            details = {}

        creation = (
            _int(usage.get("cache_creation_input_tokens"))
            or _int(usage.get("cache_write_input_tokens"))
            or _int(details.get("cached_tokens_creation"))
        )
        read = (
            _int(usage.get("cache_read_input_tokens"))
            or _int(usage.get("cached_tokens"))
            or _int(details.get("cached_tokens"))
        )

        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total,
            cache_creation_input_tokens=creation,
            cache_read_input_tokens=read,
            raw=dict(usage),
        )

    @property
    def has_cache_data(self) -> bool:
        return self.cache_creation_input_tokens > 0 or self.cache_read_input_tokens > 0

    @property
    def cache_hit_rate(self) -> float:
        """Cache reads as a percentage of prompt tokens (one decimal)."""
        if self.prompt_tokens <= 0:
            return 0.0
        return round(self.cache_read_input_tokens / self.prompt_tokens * 100, 1)

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cache_creation_input_tokens": self.cache_creation_input_tokens,
            "cache_read_input_tokens": self.cache_read_input_tokens,
        }


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class StreamingState:
    """Mutable state of one in-flight streaming call.

    Owned by exactly one attempt; a retry starts from a fresh instance.
    """

    accumulated_content: str = ""
    tool_calls: dict[int, PartialToolCall] = field(default_factory=dict)
    model_name: str | None = None
    generation_id: str | None = None
    usage: UsageInfo | None = None
    finish_reason: str | None = None
    content_complete: bool = False
    json_buffer: str = ""
    last_error: str | None = None
    # Keeps multi-byte characters split across network chunks intact.
    decoder: codecs.IncrementalDecoder = field(
        default_factory=_utf8_decoder, repr=False, compare=False,
    )

    @property
    def accepts_content(self) -> bool:
        """False once the stream is complete or failed in-band."""
        return not self.content_complete and self.last_error is None

    def set_identity(self, model: str | None, generation_id: str | None) -> None:
        """Record model name and generation id from the first event carrying them."""
        if self.model_name is None and model:
            self.model_name = model
        if self.generation_id is None and generation_id:
            self.generation_id = generation_id

    def finish(self, reason: str | None) -> None:
        if self.finish_reason is None and reason:
            self.finish_reason = reason
        self.content_complete = True


# ---------------------------------------------------------------------------
# Canonical output types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolCall:
    """A complete tool call as exposed to callers."""

    name: str
    input: Mapping[str, Any]
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "input": dict(self.input), "id": self.id}


@dataclass(frozen=True)
class CanonicalResponse:
    """The single response shape callers ever see."""

    content: str = ""
    model: str = ""
    role: str = "assistant"
    stop_reason: str | None = None
    stop_sequence: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    usage: UsageInfo | None = None
    finish_reason: str | None = None
    generation_id: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "role": self.role,
            "stop_reason": self.stop_reason,
            "stop_sequence": self.stop_sequence,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "usage": self.usage.to_dict() if self.usage else None,
            "finish_reason": self.finish_reason,
            "generation_id": self.generation_id,
        }


@dataclass(frozen=True)
class StreamChunk:
    """Normalized event handed to the caller while a stream is in flight."""

    type: ChunkType
    content: str = ""
    tool_calls: tuple[dict[str, Any], ...] = ()
    finish_reason: str | None = None
    error_message: str = ""
    raw_error: str = ""
    error_code: Any = None


# ---------------------------------------------------------------------------
# Tool execution and cancellation
# ---------------------------------------------------------------------------

class OutcomeKind(enum.Enum):
    RESULT = "result"
    ERROR = "error"
    PENDING = "pending"


@dataclass(frozen=True)
class ToolOutcome:
    """What a tool executor returns for one tool call."""

    kind: OutcomeKind
    payload: str = ""

    @classmethod
    def result(cls, payload: str) -> ToolOutcome:
        return cls(OutcomeKind.RESULT, payload)

    @classmethod
    def error(cls, payload: str) -> ToolOutcome:
        return cls(OutcomeKind.ERROR, payload)

    @classmethod
    def pending(cls) -> ToolOutcome:
        return cls(OutcomeKind.PENDING)

    def to_message(self) -> str:
        if self.kind is OutcomeKind.ERROR:
            return f"[Tool Error] {self.payload}"
        return self.payload


class CancellationToken:
    """Cooperative stop signal checked between calls, never mid-read."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def check(self) -> None:
        """Raise ``CancellationError`` if cancellation was requested."""
        if self._cancelled:
            raise CancellationError("Request was cancelled")
