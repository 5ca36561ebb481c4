"""Mistral: OpenAI-compatible, plain-text messages, no prompt caching."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from llm_unify.cache import block_text
from llm_unify.providers.openai_compat import OpenAICompatibleAdapter
from llm_unify.types import ProviderType


def flatten_text(content: Any) -> str:
    """Join the text parts of block content; strings pass through."""
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, Mapping):
                text = block_text(part)
                if text is None and isinstance(part.get("content"), str):
                    text = part["content"]
                if text is not None:
                    parts.append(text)
            else:
                parts.append(str(part))
        return "\n".join(parts)
    return str(content)


class MistralAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.MISTRAL
    label = "MISTRAL"
    supports_cache = False

    def format_system(self, system_messages: Sequence[Any]) -> list[dict[str, Any]]:
        texts = []
        for msg in system_messages:
            if isinstance(msg, Mapping):
                text = msg.get("text", msg.get("content"))
                text = flatten_text(text)
            else:
                text = str(msg) if msg else ""
            if text:
                texts.append(text)
        combined = "\n\n".join(texts)
        if not combined.strip():
            return []
        return [{"role": "system", "content": combined}]

    def format_history(
        self, history: Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        formatted = []
        for msg in history:
            entry: dict[str, Any] = {
                "role": msg.get("role"),
                "content": flatten_text(msg.get("content")),
            }
            if entry["role"] == "assistant" and msg.get("tool_calls"):
                entry["tool_calls"] = msg["tool_calls"]
            if entry["role"] == "tool":
                entry["tool_call_id"] = msg.get("tool_call_id")
            formatted.append(entry)
        return formatted
