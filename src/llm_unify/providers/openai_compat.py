"""Adapter for OpenAI-compatible ``chat/completions`` streams."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from llm_unify.errors import message_from_payload
from llm_unify.providers.base import Emit, StreamAdapter
from llm_unify.standardize import standardize_chat_completion
from llm_unify.stream.accumulator import merge
from llm_unify.types import (
    CanonicalResponse,
    StreamingState,
    ToolOutcome,
    UsageInfo,
)

_logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter(StreamAdapter):
    """Streams of ``{"choices": [{"delta": ...}]}`` payloads.

    Subclasses differ in how requests are shaped, not in how the stream
    is read.
    """

    label = "OPENAI"

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    def format_tools(self, tools: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools
        ]

    def format_system(self, system_messages: Sequence[Any]) -> list[dict[str, Any]]:
        blocks = self.planner.system_blocks(system_messages)
        if not blocks:
            return []
        return [{"role": "system", "content": blocks}]

    def format_history(
        self, history: Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        return self.planner.apply(history)

    def build_request(
        self,
        system_messages: Sequence[Any],
        history: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        model: str | None = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        messages = self.format_system(system_messages) + self.format_history(history)
        body: dict[str, Any] = {
            "model": model or self.spec.model,
            "messages": messages,
            "max_tokens": self.max_tokens(),
            "stream": stream,
        }
        if tools:
            body["tools"] = self.format_tools(tools)
            body["tool_choice"] = "auto"
        if self.spec.extra_params:
            body.update(self.spec.extra_params)
        return body

    def format_tool_turn(
        self,
        response: CanonicalResponse,
        outcomes: Sequence[tuple[str, ToolOutcome]],
    ) -> list[dict[str, Any]]:
        ids = dict(outcomes)
        assistant: dict[str, Any] = {
            "role": "assistant",
            "content": response.content or "",
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(dict(tc.input)),
                    },
                }
                for tc in response.tool_calls
                if tc.id in ids
            ],
        }
        results = [
            {"role": "tool", "tool_call_id": call_id, "content": outcome.to_message()}
            for call_id, outcome in outcomes
        ]
        return [assistant, *results]

    # ------------------------------------------------------------------
    # Streaming side
    # ------------------------------------------------------------------

    async def handle_event(
        self,
        event: Mapping[str, Any],
        state: StreamingState,
        emit: Emit | None,
    ) -> None:
        error = event.get("error")
        if error:
            await self._handle_error(error, state, emit)
            return

        state.set_identity(event.get("model"), event.get("id"))

        usage = event.get("usage")
        if isinstance(usage, Mapping) and usage:
            state.usage = UsageInfo.from_mapping(usage)
            if state.usage is not None and state.usage.has_cache_data:
                _logger.info(
                    "[%s STREAM] Cache data received: creation=%d, read=%d",
                    self.label, state.usage.cache_creation_input_tokens,
                    state.usage.cache_read_input_tokens,
                )

        choices = event.get("choices")
        if not isinstance(choices, list) or not choices:
            return
        choice = choices[0]
        if not isinstance(choice, Mapping):
            return
        delta = choice.get("delta")
        if not isinstance(delta, Mapping):
            delta = {}

        content = delta.get("content")
        if isinstance(content, str):
            await self.emit_content(content, state, emit)

        fragments = delta.get("tool_calls")
        if isinstance(fragments, list) and fragments and state.accepts_content:
            for fragment in fragments:
                if isinstance(fragment, Mapping):
                    merge(fragment, state.tool_calls)
            await self.emit_tool_calls(state, emit)

        finish_reason = choice.get("finish_reason")
        if finish_reason and state.accepts_content:
            state.finish(finish_reason)
            await self.emit_finish(state, emit)

    async def _handle_error(
        self, error: Any, state: StreamingState, emit: Emit | None,
    ) -> None:
        code = error.get("code") if isinstance(error, Mapping) else None
        message = message_from_payload({"error": error}) or str(error)
        await self.emit_error(message, state, emit, code=code)

    def standardize(self, payload: Mapping[str, Any]) -> CanonicalResponse:
        return standardize_chat_completion(payload)
