"""Scaleway Generative APIs: the Mistral request shape with a lower token cap."""

from __future__ import annotations

from llm_unify.providers.mistral import MistralAdapter
from llm_unify.types import ProviderType

# Several hosted models reject larger completion limits
SCALEWAY_MAX_TOKENS = 4096


class ScalewayAdapter(MistralAdapter):
    provider_type = ProviderType.SCALEWAY
    label = "SCALEWAY"

    def max_tokens(self) -> int:
        return min(super().max_tokens(), SCALEWAY_MAX_TOKENS)
