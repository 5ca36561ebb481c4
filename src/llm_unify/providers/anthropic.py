"""Anthropic Messages API adapter.

The stream is a sequence of typed events::

    message_start -> (content_block_start, content_block_delta*, content_block_stop)*
                  -> message_delta -> message_stop

with ``ping`` keep-alives and ``error`` events possible at any point.
Tool-use blocks are keyed by their content-block index, so they go through
the same index-first accumulator as OpenAI-style deltas.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from llm_unify.providers.base import Emit, StreamAdapter
from llm_unify.standardize import standardize_anthropic
from llm_unify.stream.accumulator import merge
from llm_unify.types import (
    CanonicalResponse,
    OutcomeKind,
    ProviderType,
    StreamingState,
    ToolOutcome,
    UsageInfo,
)

_logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
PROMPT_CACHING_BETA = "prompt-caching-2024-07-31"
DEFAULT_SYSTEM_PROMPT = "You are an AI assistant."


class AnthropicAdapter(StreamAdapter):
    provider_type = ProviderType.ANTHROPIC
    path = "v1/messages"
    label = "ANTHROPIC"
    # Tool results travel as user-message blocks; no role needs plain strings
    string_only_roles = ()

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.spec.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": PROMPT_CACHING_BETA,
        }

    def format_tools(self, tools: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool["name"],
                "description": tool["description"],
                "input_schema": tool["input_schema"],
            }
            for tool in tools
        ]

    def build_request(
        self,
        system_messages: Sequence[Any],
        history: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        model: str | None = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        system = self.planner.system_blocks(system_messages) or DEFAULT_SYSTEM_PROMPT
        body: dict[str, Any] = {
            "model": model or self.spec.model,
            "system": system,
            "messages": self.planner.apply(history),
            "max_tokens": self.max_tokens(),
            "stream": stream,
        }
        if tools:
            body["tools"] = self.format_tools(tools)
            body["tool_choice"] = {"type": "auto"}
        if self.spec.extra_params:
            body.update(self.spec.extra_params)
        return body

    def format_tool_turn(
        self,
        response: CanonicalResponse,
        outcomes: Sequence[tuple[str, ToolOutcome]],
    ) -> list[dict[str, Any]]:
        ids = dict(outcomes)
        content: list[dict[str, Any]] = []
        if response.content.strip():
            content.append({"type": "text", "text": response.content})
        for tc in response.tool_calls:
            if tc.id not in ids:
                continue
            content.append(
                {"type": "tool_use", "id": tc.id, "name": tc.name, "input": dict(tc.input)}
            )

        results = []
        for call_id, outcome in outcomes:
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": call_id,
                "content": outcome.to_message(),
            }
            if outcome.kind is OutcomeKind.ERROR:
                block["is_error"] = True
            results.append(block)
        return [
            {"role": "assistant", "content": content},
            {"role": "user", "content": results},
        ]

    # ------------------------------------------------------------------
    # Streaming side
    # ------------------------------------------------------------------

    def _merge_usage(self, state: StreamingState, usage: Any) -> None:
        if not isinstance(usage, Mapping) or not usage:
            return
        combined = dict(state.usage.raw) if state.usage is not None else {}
        combined.update(usage)
        # Recomputed from the parts on every update
        combined.pop("total_tokens", None)
        state.usage = UsageInfo.from_mapping(combined)

    async def handle_event(
        self,
        event: Mapping[str, Any],
        state: StreamingState,
        emit: Emit | None,
    ) -> None:
        event_type = event.get("type")
        _logger.debug("Anthropic event: %s", event_type)

        if event_type == "message_start":
            message = event.get("message")
            if not isinstance(message, Mapping):
                return
            state.set_identity(message.get("model"), message.get("id"))
            self._merge_usage(state, message.get("usage"))

        elif event_type == "content_block_start":
            block = event.get("content_block")
            if not isinstance(block, Mapping) or block.get("type") != "tool_use":
                return
            if not state.accepts_content:
                return
            merge(
                {
                    "index": event.get("index"),
                    "id": block.get("id"),
                    "function": {"name": block.get("name"), "arguments": ""},
                },
                state.tool_calls,
            )
            await self.emit_tool_calls(state, emit)

        elif event_type == "content_block_delta":
            delta = event.get("delta")
            if not isinstance(delta, Mapping):
                return
            if delta.get("type") == "text_delta":
                text = delta.get("text")
                if isinstance(text, str):
                    await self.emit_content(text, state, emit)
            elif delta.get("type") == "input_json_delta":
                partial = delta.get("partial_json")
                if isinstance(partial, str) and partial and state.accepts_content:
                    merge(
                        {"index": event.get("index"), "function": {"arguments": partial}},
                        state.tool_calls,
                    )
                    await self.emit_tool_calls(state, emit)

        elif event_type == "message_delta":
            delta = event.get("delta")
            stop_reason = delta.get("stop_reason") if isinstance(delta, Mapping) else None
            if stop_reason and state.accepts_content and state.finish_reason is None:
                state.finish_reason = stop_reason
            self._merge_usage(state, event.get("usage"))

        elif event_type == "message_stop":
            if state.accepts_content:
                state.finish(None)
                await self.emit_finish(state, emit)

        elif event_type == "error":
            error = event.get("error")
            message = "Unknown error"
            if isinstance(error, Mapping) and error.get("message"):
                message = str(error["message"])
            code = error.get("type") if isinstance(error, Mapping) else None
            await self.emit_error(message, state, emit, code=code)

        # "ping" and "content_block_stop" carry nothing to apply

    def standardize(self, payload: Mapping[str, Any]) -> CanonicalResponse:
        return standardize_anthropic(payload)
