"""Assemble tool calls from index-keyed streaming fragments.

Providers stream tool calls as incremental deltas: the first fragment for
a position usually carries ``id`` and ``function.name``, later ones only
``function.arguments`` pieces that must be concatenated in arrival order.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from llm_unify.stream.json_repair import parse_tool_arguments
from llm_unify.types import FunctionFragment, PartialToolCall, ToolCall

_logger = logging.getLogger(__name__)

# Buffers this short that end in an opening brace are where some providers
# repeat the opening fragment (``{"{"command``).
_DUPLICATED_OPENINGS = ("{", '{"')


def _strip_duplicated_opening(existing: str, incoming: str) -> str:
    if existing in _DUPLICATED_OPENINGS and incoming.startswith('{"'):
        _logger.debug(
            "Dropping duplicated opening %r from tool arguments fragment", existing,
        )
        return incoming[len(existing):]
    return incoming


def _find(
    fragment: Mapping[str, Any], into: Mapping[int, PartialToolCall],
) -> PartialToolCall | None:
    frag_id = fragment.get("id")
    if frag_id:
        for call in into.values():
            if call.id == frag_id:
                return call
    index = fragment.get("index")
    if isinstance(index, int):
        return into.get(index)
    return None


def merge(
    fragment: Mapping[str, Any], into: dict[int, PartialToolCall],
) -> PartialToolCall:
    """Merge one tool-call fragment into *into* and return the merged entry.

    Lookup is by ``id`` when a prior entry shares it, otherwise by
    ``index``.  ``id`` and ``function.name`` are overwritten when present;
    ``function.arguments`` is only ever appended.
    """
    function = fragment.get("function") or {}
    name = function.get("name")
    arguments = function.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        arguments = str(arguments)

    existing = _find(fragment, into)
    if existing is not None:
        if fragment.get("id"):
            existing.id = fragment["id"]
        if name:
            existing.function.name = name
        if arguments:
            arguments = _strip_duplicated_opening(
                existing.function.arguments, arguments,
            )
            existing.function.arguments += arguments
        return existing

    index = fragment.get("index")
    if not isinstance(index, int):
        index = max(into, default=-1) + 1
    entry = PartialToolCall(
        index=index,
        id=fragment.get("id"),
        type=fragment.get("type") or "function",
        function=FunctionFragment(name=name, arguments=arguments or ""),
    )
    into[index] = entry
    return entry


def finalize(calls: Mapping[int, PartialToolCall]) -> tuple[ToolCall, ...]:
    """Convert accumulated partial calls into canonical tool calls.

    Entries with neither a name nor any arguments are dropped.
    """
    result: list[ToolCall] = []
    for index in sorted(calls):
        call = calls[index]
        name = call.function.name or ""
        raw_args = call.function.arguments
        if not name and not raw_args.strip():
            continue
        result.append(
            ToolCall(name=name, input=parse_tool_arguments(raw_args), id=call.id)
        )
    return tuple(result)


class ToolCallAccumulator:
    """Convenience wrapper around :func:`merge` for a single stream."""

    def __init__(self, calls: dict[int, PartialToolCall] | None = None) -> None:
        self._calls: dict[int, PartialToolCall] = calls if calls is not None else {}

    def feed(self, fragments: Iterable[Mapping[str, Any]]) -> None:
        for fragment in fragments:
            merge(fragment, self._calls)

    def has_calls(self) -> bool:
        return bool(self._calls)

    def snapshot(self) -> tuple[dict[str, Any], ...]:
        """Current merged set, in index order, as plain dicts."""
        return tuple(self._calls[i].to_dict() for i in sorted(self._calls))

    def finalize(self) -> tuple[ToolCall, ...]:
        return finalize(self._calls)
