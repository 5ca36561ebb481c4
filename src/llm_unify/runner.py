"""Conversation runner: stream -> tools -> follow-up, until the model stops.

The runner owns no provider logic.  It calls the client, hands tool calls
to a caller-supplied executor, appends the provider-shaped tool turn to a
working copy of the history, and calls again.
"""

from __future__ import annotations

import dataclasses
import enum
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence, Union

from llm_unify.client import UnifiedLLMClient
from llm_unify.config import UnifyConfig
from llm_unify.errors import ApiError, CancellationError, UserFacingError, translate_api_error
from llm_unify.events import ChunkBus
from llm_unify.types import (
    CancellationToken,
    CanonicalResponse,
    ChunkType,
    OutcomeKind,
    StreamChunk,
    ToolCall,
    ToolOutcome,
)

_logger = logging.getLogger(__name__)

# Given one complete tool call, returns its outcome (sync or async)
ToolExecutor = Callable[[ToolCall], Union[ToolOutcome, Awaitable[ToolOutcome]]]


class RunStatus(enum.Enum):
    DONE = "done"
    AWAITING_APPROVAL = "awaiting_approval"
    WAITING = "waiting"
    FOLLOWUP_LIMIT = "followup_limit"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """How a run ended, plus everything needed to resume it."""

    status: RunStatus
    responses: list[CanonicalResponse] = field(default_factory=list)
    history: list[dict[str, Any]] = field(default_factory=list)
    pending_tool_calls: tuple[ToolCall, ...] = ()
    error: UserFacingError | None = None
    followups: int = 0

    @property
    def final(self) -> CanonicalResponse | None:
        return self.responses[-1] if self.responses else None


def truncate_result(payload: str, limit: int) -> str:
    if limit <= 0 or len(payload) <= limit:
        return payload
    return f"{payload[:limit]}\n... [truncated {len(payload) - limit} chars]"


def _with_ids(response: CanonicalResponse) -> CanonicalResponse:
    """Give every tool call an id so results can be paired with it."""
    if all(tc.id for tc in response.tool_calls):
        return response
    calls = tuple(
        tc if tc.id else dataclasses.replace(tc, id=f"call_{uuid.uuid4().hex[:24]}")
        for tc in response.tool_calls
    )
    return dataclasses.replace(response, tool_calls=calls)


class ConversationRunner:
    """Drive one conversation turn through any number of tool rounds.

    Parameters
    ----------
    client:
        Client bound to the provider to call.
    executor:
        Runs one tool call; returns a result, an error or a pending marker.
    config:
        Dangerous-tool list, follow-up cap, result size cap and throttle.
        Defaults to the client's configuration.
    bus:
        Chunk bus receiving every normalized chunk.  One is created from
        ``streaming_throttle_ms`` when omitted.
    """

    def __init__(
        self,
        client: UnifiedLLMClient,
        executor: ToolExecutor,
        config: UnifyConfig | None = None,
        bus: ChunkBus | None = None,
    ) -> None:
        self._client = client
        self._executor = executor
        self._config = config or client.config
        self._bus = bus or ChunkBus(self._config.streaming_throttle_ms)

    @property
    def bus(self) -> ChunkBus:
        return self._bus

    async def run(
        self,
        system_messages: Sequence[Any],
        history: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        model: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunResult:
        """Run until the model answers without tools or the loop must pause.

        *history* is treated as an immutable snapshot; tool turns are
        appended to a working copy returned in :attr:`RunResult.history`.
        """
        token = cancel_token or CancellationToken()
        result = RunResult(
            status=RunStatus.DONE,
            history=[dict(m) for m in history],
        )

        try:
            while True:
                # Checkpoint before the first call and before every follow-up
                token.check()

                response = await self._client.stream_chat(
                    system_messages, result.history, tools,
                    model=model, on_chunk=self._bus, cancel_token=token,
                )
                await self._bus.flush()
                response = _with_ids(response)
                result.responses.append(response)

                if response.finish_reason == "error":
                    # Already reported through the error chunk
                    result.status = RunStatus.FAILED
                    return result
                if not response.has_tool_calls:
                    result.status = RunStatus.DONE
                    return result

                dangerous = [
                    tc for tc in response.tool_calls
                    if tc.name in self._config.dangerous_tools
                ]
                if dangerous:
                    _logger.info(
                        "Pausing for approval of dangerous tool(s): %s",
                        ", ".join(tc.name for tc in dangerous),
                    )
                    result.status = RunStatus.AWAITING_APPROVAL
                    result.pending_tool_calls = response.tool_calls
                    return result

                outcomes: list[tuple[str, ToolOutcome]] = []
                for call in response.tool_calls:
                    outcome = await self._execute(call)
                    if outcome.kind is OutcomeKind.PENDING:
                        _logger.info("Tool %s is pending; run is waiting", call.name)
                        result.status = RunStatus.WAITING
                        result.pending_tool_calls = tuple(
                            tc for tc in response.tool_calls
                            if tc.id not in dict(outcomes)
                        )
                        return result
                    outcomes.append((call.id or "", outcome))

                result.history.extend(
                    self._client.adapter.format_tool_turn(response, outcomes)
                )

                if result.followups >= self._config.max_tool_followups:
                    _logger.warning(
                        "Follow-up limit reached (%d); stopping",
                        self._config.max_tool_followups,
                    )
                    result.status = RunStatus.FOLLOWUP_LIMIT
                    return result
                result.followups += 1
                _logger.info(
                    "Tool results ready; follow-up %d/%d",
                    result.followups, self._config.max_tool_followups,
                )

        except CancellationError:
            _logger.info("Run cancelled after %d follow-up(s)", result.followups)
            await self._bus.flush()
            result.status = RunStatus.CANCELLED
            return result
        except ApiError as e:
            await self._bus.flush()
            friendly = translate_api_error(str(e))
            _logger.error("Run failed (%s): %s", friendly.category, e)
            await self._bus.publish(
                StreamChunk(
                    ChunkType.ERROR,
                    error_message=friendly.message,
                    raw_error=str(e),
                    error_code=e.status,
                )
            )
            result.status = RunStatus.FAILED
            result.error = friendly
            return result

    async def _execute(self, call: ToolCall) -> ToolOutcome:
        _logger.info("Executing tool %s (id=%s)", call.name, call.id)
        try:
            outcome = self._executor(call)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            _logger.exception("Tool %s raised", call.name)
            return ToolOutcome.error(f"{type(e).__name__}: {e}")

        if outcome.kind is OutcomeKind.PENDING:
            return outcome
        limit = self._config.max_tool_result_size
        payload = truncate_result(outcome.payload, limit)
        if payload is not outcome.payload:
            _logger.warning(
                "Tool %s result truncated from %d to %d chars",
                call.name, len(outcome.payload), limit,
            )
            return ToolOutcome(outcome.kind, payload)
        return outcome
