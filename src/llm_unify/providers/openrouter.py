"""OpenRouter: OpenAI-compatible, with prompt caching and usage accounting."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from llm_unify.providers.openai_compat import OpenAICompatibleAdapter
from llm_unify.types import ProviderType


class OpenRouterAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.OPENROUTER
    label = "OPENROUTER"

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["HTTP-Referer"] = self.config.referer_url
        headers["X-Title"] = self.config.app_title
        return headers

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
            "stream": stream,
            "usage": {"include": True},
        }
        # Without an explicit limit the routed model picks its own
        if self.spec.max_tokens:
            body["max_tokens"] = self.spec.max_tokens
        if tools:
            body["tools"] = self.format_tools(tools)
        if self.spec.extra_params:
            body.update(self.spec.extra_params)
        return body
