"""Configuration for llm-unify.

Config discovery (first match wins):
  1. explicit ``path`` argument
  2. ``./llm_unify.yaml``
  3. ``~/.config/llm-unify/config.yaml``
  4. Built-in defaults

The loaded :class:`UnifyConfig` is passed explicitly into clients and
runners; nothing reads a global.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from llm_unify.errors import ConfigError
from llm_unify.types import ProviderType

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

DEFAULT_BASE_URLS: dict[ProviderType, str] = {
    ProviderType.ANTHROPIC: "https://api.anthropic.com",
    ProviderType.OPENROUTER: "https://openrouter.ai/api/v1",
    ProviderType.MISTRAL: "https://api.mistral.ai/v1",
    ProviderType.SCALEWAY: "https://api.scaleway.ai/v1",
}


@dataclass
class ProviderSpec:
    """A named upstream provider account."""

    provider_type: ProviderType = ProviderType.OPENROUTER
    api_key: str = ""
    base_url: str = ""
    model: str = "anthropic/claude-3.7-sonnet"
    max_tokens: int = 0  # 0 = use UnifyConfig.default_max_tokens
    extra_params: dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.base_url or DEFAULT_BASE_URLS[self.provider_type]


@dataclass
class RetrySpec:
    """Attempt count and backoff for one streaming call."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: float = 0.25
    # 429 is deliberately absent: rate limits fail fast.
    retryable_statuses: frozenset[int] = frozenset(
        {500, 502, 503, 504, 520, 521, 522, 523, 524, 529}
    )


@dataclass
class CacheSpec:
    """Prompt-cache marker settings."""

    enabled: bool = True
    max_markers: int = 4  # includes the slot reserved for the system prompt


@dataclass
class UnifyConfig:
    """Top-level, process-wide configuration (read-only after startup)."""

    provider: str = "default"
    providers: dict[str, ProviderSpec] = field(
        default_factory=lambda: {"default": ProviderSpec()}
    )
    retry: RetrySpec = field(default_factory=RetrySpec)
    cache: CacheSpec = field(default_factory=CacheSpec)

    # Tools that pause for approval instead of running automatically
    dangerous_tools: list[str] = field(default_factory=list)

    default_max_tokens: int = 8192
    streaming_throttle_ms: int = 50
    max_tool_followups: int = 100
    max_tool_result_size: int = 50_000

    # Timeouts (seconds).  The read ceiling guards a hung connection only.
    connect_timeout: float = 10.0
    read_timeout: float = 600.0

    referer_url: str = "http://localhost:3000"
    app_title: str = "llm-unify"

    @property
    def active_provider(self) -> ProviderSpec:
        try:
            return self.providers[self.provider]
        except KeyError:
            raise ConfigError(f"Unknown provider profile: {self.provider!r}") from None

    def provider_spec(self, name: str | None = None) -> ProviderSpec:
        if name is None:
            return self.active_provider
        try:
            return self.providers[name]
        except KeyError:
            raise ConfigError(f"Unknown provider profile: {name!r}") from None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./llm_unify.yaml"),
    Path.home() / ".config" / "llm-unify" / "config.yaml",
]

_ENV_REF = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def _expand_env(value: str) -> str:
    """Expand a whole-value ``${VAR}`` reference from the environment."""
    match = _ENV_REF.match(value.strip())
    if not match:
        return value
    return os.environ.get(match.group(1), "")


def _parse_provider_type(raw: Any) -> ProviderType:
    try:
        return ProviderType(str(raw).lower())
    except ValueError:
        valid = ", ".join(p.value for p in ProviderType)
        raise ConfigError(
            f"Unsupported provider type {raw!r} (expected one of: {valid})"
        ) from None


def _parse_provider(raw: dict[str, Any]) -> ProviderSpec:
    return ProviderSpec(
        provider_type=_parse_provider_type(raw.get("provider_type", "openrouter")),
        api_key=_expand_env(str(raw.get("api_key", ""))),
        base_url=raw.get("base_url", ""),
        model=raw.get("model", ProviderSpec.model),
        max_tokens=int(raw.get("max_tokens", 0) or 0),
        extra_params=raw.get("extra_params", {}) or {},
    )


def _parse_retry(raw: dict[str, Any] | None) -> RetrySpec:
    if not raw:
        return RetrySpec()
    base = RetrySpec()
    statuses = raw.get("retryable_statuses")
    return RetrySpec(
        max_attempts=max(1, int(raw.get("max_attempts", base.max_attempts))),
        base_delay=float(raw.get("base_delay", base.base_delay)),
        max_delay=float(raw.get("max_delay", base.max_delay)),
        jitter=float(raw.get("jitter", base.jitter)),
        retryable_statuses=(
            frozenset(int(s) for s in statuses)
            if statuses is not None else base.retryable_statuses
        ),
    )


def _parse_cache(raw: dict[str, Any] | None) -> CacheSpec:
    if not raw:
        return CacheSpec()
    return CacheSpec(
        enabled=bool(raw.get("enabled", True)),
        max_markers=int(raw.get("max_markers", 4)),
    )


def load_config(path: str | Path | None = None) -> UnifyConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    UnifyConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s; using defaults", path)
            return UnifyConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found; using defaults")
        return UnifyConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    providers: dict[str, ProviderSpec] = {}
    for name, praw in (raw.get("providers") or {}).items():
        providers[name] = _parse_provider(praw or {})
    if not providers:
        providers["default"] = ProviderSpec()

    defaults = UnifyConfig()
    config = UnifyConfig(
        provider=raw.get("provider", next(iter(providers))),
        providers=providers,
        retry=_parse_retry(raw.get("retry")),
        cache=_parse_cache(raw.get("cache")),
        dangerous_tools=list(raw.get("dangerous_tools", []) or []),
        default_max_tokens=int(raw.get("default_max_tokens", defaults.default_max_tokens)),
        streaming_throttle_ms=int(
            raw.get("streaming_throttle_ms", defaults.streaming_throttle_ms)
        ),
        max_tool_followups=int(
            raw.get("max_tool_followups", defaults.max_tool_followups)
        ),
        max_tool_result_size=int(
            raw.get("max_tool_result_size", defaults.max_tool_result_size)
        ),
        connect_timeout=float(raw.get("connect_timeout", defaults.connect_timeout)),
        read_timeout=float(raw.get("read_timeout", defaults.read_timeout)),
        referer_url=raw.get("referer_url", defaults.referer_url),
        app_title=raw.get("app_title", defaults.app_title),
    )
    # Fail early on a dangling active profile name
    config.active_provider
    return config
