"""One response contract over Anthropic, OpenRouter, Mistral and Scaleway."""

from llm_unify.cache import CacheBreakpointPlanner
from llm_unify.client import UnifiedLLMClient
from llm_unify.config import CacheSpec, ProviderSpec, RetrySpec, UnifyConfig, load_config
from llm_unify.errors import (
    ApiError,
    CancellationError,
    ConfigError,
    LLMUnifyError,
    RetryExhaustedError,
    UserFacingError,
    extract_error_message,
    translate_api_error,
)
from llm_unify.events import ChunkBus
from llm_unify.retry import RetryController
from llm_unify.runner import ConversationRunner, RunResult, RunStatus
from llm_unify.types import (
    CancellationToken,
    CanonicalResponse,
    ChunkType,
    ProviderType,
    StreamChunk,
    StreamingState,
    ToolCall,
    ToolOutcome,
    UsageInfo,
)

__all__ = [
    "ApiError",
    "CacheBreakpointPlanner",
    "CacheSpec",
    "CancellationError",
    "CancellationToken",
    "CanonicalResponse",
    "ChunkBus",
    "ChunkType",
    "ConfigError",
    "ConversationRunner",
    "LLMUnifyError",
    "ProviderSpec",
    "ProviderType",
    "RetryController",
    "RetryExhaustedError",
    "RetrySpec",
    "RunResult",
    "RunStatus",
    "StreamChunk",
    "StreamingState",
    "ToolCall",
    "ToolOutcome",
    "UnifiedLLMClient",
    "UnifyConfig",
    "UsageInfo",
    "UserFacingError",
    "extract_error_message",
    "load_config",
    "translate_api_error",
]
