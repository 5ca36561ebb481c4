"""Provider adapters, selected once per client by provider type."""

from __future__ import annotations

from llm_unify.config import ProviderSpec, UnifyConfig
from llm_unify.providers.anthropic import AnthropicAdapter
from llm_unify.providers.base import StreamAdapter, normalize_tools, sanitize_for_logging
from llm_unify.providers.mistral import MistralAdapter
from llm_unify.providers.openai_compat import OpenAICompatibleAdapter
from llm_unify.providers.openrouter import OpenRouterAdapter
from llm_unify.providers.scaleway import ScalewayAdapter
from llm_unify.types import ProviderType

_ADAPTERS: dict[ProviderType, type[StreamAdapter]] = {
    ProviderType.ANTHROPIC: AnthropicAdapter,
    ProviderType.OPENROUTER: OpenRouterAdapter,
    ProviderType.MISTRAL: MistralAdapter,
    ProviderType.SCALEWAY: ScalewayAdapter,
}


def create_adapter(spec: ProviderSpec, config: UnifyConfig | None = None) -> StreamAdapter:
    """Instantiate the adapter for ``spec.provider_type``."""
    return _ADAPTERS[spec.provider_type](spec, config)


__all__ = [
    "AnthropicAdapter",
    "MistralAdapter",
    "OpenAICompatibleAdapter",
    "OpenRouterAdapter",
    "ScalewayAdapter",
    "StreamAdapter",
    "create_adapter",
    "normalize_tools",
    "sanitize_for_logging",
]
