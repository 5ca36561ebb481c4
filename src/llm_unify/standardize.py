"""Map provider payloads and finished streams into ``CanonicalResponse``.

Provider JSON is read through small schema classes that ignore unknown
fields and default missing ones, so raw dicts never leave this module.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from llm_unify.stream.accumulator import finalize, merge
from llm_unify.stream.json_repair import parse_tool_arguments
from llm_unify.types import (
    CanonicalResponse,
    PartialToolCall,
    StreamingState,
    ToolCall,
    UsageInfo,
)

_logger = logging.getLogger(__name__)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


# ---------------------------------------------------------------------------
# Anthropic Messages API
# ---------------------------------------------------------------------------

@dataclass
class AnthropicMessage:
    """Non-streaming ``/v1/messages`` response."""

    id: str | None = None
    model: str = ""
    role: str = "assistant"
    text_blocks: list[str] = field(default_factory=list)
    tool_uses: list[Mapping[str, Any]] = field(default_factory=list)
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AnthropicMessage:
        blocks = [b for b in _list(payload.get("content")) if isinstance(b, Mapping)]
        return cls(
            id=payload.get("id"),
            model=payload.get("model") or "",
            role=payload.get("role") or "assistant",
            text_blocks=[
                b.get("text") or "" for b in blocks if b.get("type") == "text"
            ],
            tool_uses=[b for b in blocks if b.get("type") == "tool_use"],
            stop_reason=payload.get("stop_reason"),
            stop_sequence=payload.get("stop_sequence"),
            usage=_mapping(payload.get("usage")),
        )

    def to_canonical(self) -> CanonicalResponse:
        tool_calls = []
        for block in self.tool_uses:
            raw_input = block.get("input")
            if isinstance(raw_input, str):
                raw_input = parse_tool_arguments(raw_input)
            tool_calls.append(
                ToolCall(
                    name=block.get("name") or "",
                    input=dict(_mapping(raw_input)),
                    id=block.get("id"),
                )
            )
        return CanonicalResponse(
            content="".join(self.text_blocks),
            model=self.model,
            role=self.role,
            stop_reason=self.stop_reason,
            stop_sequence=self.stop_sequence,
            tool_calls=tuple(tool_calls),
            usage=UsageInfo.from_mapping(self.usage),
            finish_reason=self.stop_reason,
            generation_id=self.id,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (OpenRouter, Mistral, Scaleway)
# ---------------------------------------------------------------------------

@dataclass
class ChatCompletion:
    """Non-streaming ``/chat/completions`` response."""

    id: str | None = None
    model: str = ""
    role: str = "assistant"
    content: str | None = None
    tool_calls: list[Mapping[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ChatCompletion:
        choices = _list(payload.get("choices"))
        choice = _mapping(choices[0]) if choices else {}
        message = _mapping(choice.get("message"))
        content = message.get("content")
        if isinstance(content, list):
            content = "".join(
                str(b.get("text") or "") for b in content if isinstance(b, Mapping)
            )
        return cls(
            id=payload.get("id"),
            model=payload.get("model") or "",
            role=message.get("role") or "assistant",
            content=content,
            tool_calls=[
                tc for tc in _list(message.get("tool_calls")) if isinstance(tc, Mapping)
            ],
            finish_reason=choice.get("finish_reason"),
            usage=_mapping(payload.get("usage")),
        )

    def to_canonical(self) -> CanonicalResponse:
        merged: dict[int, PartialToolCall] = {}
        for position, tc in enumerate(self.tool_calls):
            fragment = dict(tc)
            fragment.setdefault("index", position)
            function = dict(_mapping(fragment.get("function")))
            # Some providers return already-decoded argument objects
            if isinstance(function.get("arguments"), Mapping):
                function["arguments"] = json.dumps(function["arguments"])
            fragment["function"] = function
            merge(fragment, merged)
        return CanonicalResponse(
            content=self.content or "",
            model=self.model,
            role=self.role,
            stop_reason=self.finish_reason,
            stop_sequence=None,
            tool_calls=finalize(merged),
            usage=UsageInfo.from_mapping(self.usage),
            finish_reason=self.finish_reason,
            generation_id=self.id,
        )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def standardize_anthropic(payload: Mapping[str, Any]) -> CanonicalResponse:
    return AnthropicMessage.from_payload(_mapping(payload)).to_canonical()


def standardize_chat_completion(payload: Mapping[str, Any]) -> CanonicalResponse:
    return ChatCompletion.from_payload(_mapping(payload)).to_canonical()


def from_streaming_state(
    state: StreamingState, requested_model: str = "",
) -> CanonicalResponse:
    """Build the final response of a streaming call."""
    finish_reason = state.finish_reason
    # An in-band error fails the stream even after a finish reason arrived
    if state.last_error is not None:
        finish_reason = "error"
    return CanonicalResponse(
        content=state.accumulated_content or "",
        model=state.model_name or requested_model,
        role="assistant",
        stop_reason=finish_reason,
        stop_sequence=None,
        tool_calls=finalize(state.tool_calls),
        usage=state.usage,
        finish_reason=finish_reason,
        generation_id=state.generation_id,
    )
