"""Error types, provider error-body extraction and user-facing translation.

Provider errors reach us in three forms: exceptions from the transport,
non-2xx bodies (sometimes JSON wrapping another JSON string), and in-band
stream events.  Whatever the form, callers get one short explanation plus
a suggested next action via :func:`translate_api_error`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class LLMUnifyError(Exception):
    """Base class for all llm-unify errors."""


class ConfigError(LLMUnifyError):
    """Invalid or incomplete configuration."""


class CancellationError(LLMUnifyError):
    """Raised at a cancellation checkpoint once a stop was requested."""


class ApiError(LLMUnifyError):
    """A provider call failed.

    ``status`` is the HTTP status when one was received, ``None`` for
    network-level failures.
    """

    def __init__(
        self,
        detail: str,
        status: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.detail = detail
        self.status = status
        self.retryable = retryable
        message = f"Status {status}: {detail}" if status is not None else detail
        super().__init__(message)


class RetryExhaustedError(ApiError):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException | str) -> None:
        self.attempts = attempts
        self.last_error = last_error
        status = getattr(last_error, "status", None)
        super().__init__(
            f"Service unavailable after {attempts} attempts: {last_error}",
            status=None,
            retryable=False,
        )
        self.last_status = status


# ---------------------------------------------------------------------------
# Error body extraction
# ---------------------------------------------------------------------------

_STATUS_PREFIX = re.compile(r"^(Status \d{3}:\s*)(.*)$", re.DOTALL)


def message_from_payload(payload: Any) -> str | None:
    """Most specific message in a decoded error object, or None."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        metadata = error.get("metadata")
        if isinstance(metadata, dict) and metadata.get("raw"):
            try:
                inner = json.loads(str(metadata["raw"]))
            except (json.JSONDecodeError, TypeError):
                inner = None
            inner_message = message_from_payload(inner)
            if inner_message:
                return inner_message
        if error.get("message"):
            return str(error["message"])
    elif isinstance(error, str) and error:
        return error
    if payload.get("message"):
        return str(payload["message"])
    return None


def extract_error_message(raw: str | bytes | None) -> str:
    """Pull the most specific human-readable message out of an error body.

    Handles plain text, ``{"error": {"message": ...}}``, ``{"message": ...}``
    and OpenRouter's ``error.metadata.raw`` which holds the upstream
    provider's error as a second JSON document.  Never raises.
    """
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw.strip()
    if not text:
        return ""

    prefix = ""
    match = _STATUS_PREFIX.match(text)
    if match:
        prefix, text = match.group(1), match.group(2).strip()

    if not text.startswith("{"):
        return prefix + text
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return prefix + text
    message = message_from_payload(payload)
    return prefix + (message if message else text)


# ---------------------------------------------------------------------------
# User-facing translation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserFacingError:
    """A short explanation and the action a user should take next."""

    category: str
    message: str
    action: str  # retry | new_conversation | change_model | rephrase | contact_admin

    def __str__(self) -> str:
        return self.message


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


# (category, pattern, message template, action). First match wins.
_ERROR_TABLE: list[tuple[str, re.Pattern[str], str, str]] = [
    (
        "tool_unsupported",
        re.compile(
            r"no endpoints found that support tool use"
            r"|tool use not supported|does not support tools",
            re.IGNORECASE,
        ),
        "The selected model does not support tools. Please choose another model.",
        "change_model",
    ),
    (
        "rate_limit",
        re.compile(r"rate.?limit|too many requests|status 429", re.IGNORECASE),
        "Too many requests to the service right now. Please retry in a few moments.",
        "retry",
    ),
    (
        "model_not_found",
        re.compile(r"model .* not found|no such model", re.IGNORECASE),
        "The requested model is not available. Please select another model.",
        "change_model",
    ),
    (
        "tool_desync",
        re.compile(
            r"tool_use.*without.*tool_result|tool_result.*tool_use_id",
            re.IGNORECASE,
        ),
        "Tool calls and tool results are out of sync. "
        "Please retry or start a new conversation.",
        "new_conversation",
    ),
    (
        "context_too_long",
        re.compile(
            r"context.*too long|maximum context length|prompt is too long"
            r"|status 413|request entity too large",
            re.IGNORECASE,
        ),
        "The conversation has become too long. Please start a new conversation.",
        "new_conversation",
    ),
    (
        "content_filter",
        re.compile(r"content.*filter|safety", re.IGNORECASE),
        "The content was filtered for safety reasons. Please rephrase your request.",
        "rephrase",
    ),
    (
        "retries_exhausted",
        re.compile(
            r"after \d+ (?:attempts|retries)|service unavailable after",
            re.IGNORECASE,
        ),
        "The service is temporarily unavailable after several attempts. "
        "Please retry later.",
        "retry",
    ),
    (
        "timeout",
        re.compile(r"time.?out|timed out", re.IGNORECASE),
        "The request took too long. Please retry.",
        "retry",
    ),
    (
        "authentication",
        re.compile(
            r"authentication|unauthorized|forbidden|api.?key|status 40[13]",
            re.IGNORECASE,
        ),
        "Authentication with the service failed. Please contact the administrator.",
        "contact_admin",
    ),
    (
        "server_error",
        re.compile(
            r"overloaded|status 5\d\d|internal server error|bad gateway"
            r"|service unavailable",
            re.IGNORECASE,
        ),
        "The service is experiencing technical difficulties. Please retry shortly.",
        "retry",
    ),
    (
        "network",
        re.compile(r"network|connection|connect", re.IGNORECASE),
        "Could not reach the service (connection problem). Please retry.",
        "retry",
    ),
    (
        "invalid_request",
        re.compile(r"invalid_request_error|invalid request|status 400", re.IGNORECASE),
        "The request was rejected (format error): {detail}. "
        "Please retry or start a new conversation.",
        "new_conversation",
    ),
]


def translate_api_error(raw: str | None) -> UserFacingError:
    """Map a raw error text to a :class:`UserFacingError`.

    Nested JSON bodies are unwrapped first, so the pattern table sees the
    provider's actual message.
    """
    original = (raw or "").strip()
    extracted = extract_error_message(original)

    for category, pattern, template, action in _ERROR_TABLE:
        if pattern.search(extracted):
            detail = _STATUS_PREFIX.sub(r"\2", extracted)
            message = template.format(detail=_truncate(detail, 300))
            return UserFacingError(category, message, action)

    if not extracted:
        return UserFacingError(
            "unknown",
            "An error occurred. Please retry or contact the administrator.",
            "retry",
        )
    return UserFacingError(
        "unknown",
        f"An error occurred: {_truncate(extracted, 200)}",
        "retry",
    )
