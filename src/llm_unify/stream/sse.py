"""Server-Sent-Events line buffering.

Network chunks split lines (and UTF-8 sequences) at arbitrary points, so
bytes are decoded incrementally into ``state.json_buffer`` and only
complete ``\\n``-terminated lines are parsed.  A trailing partial line stays
buffered until more bytes arrive or :func:`flush` is called at stream end.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator

from llm_unify.types import StreamingState

_logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def parse_line(line: str, state: StreamingState) -> dict[str, Any] | None:
    """Parse one SSE line.  Returns the JSON payload of a ``data:`` line.

    Empty lines, ``:`` comments, ``event:`` lines and the ``[DONE]``
    terminator yield ``None``; the terminator also marks the state
    complete.  Malformed JSON is logged and dropped.
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        # "event: <type>" lines: the type is repeated inside the payload
        return None

    payload = line[len("data:"):].strip()
    if payload == DONE_SENTINEL:
        state.content_complete = True
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        _logger.warning(
            "Failed to parse streaming chunk: %s, chunk: %.200s...", e, payload,
        )
        return None
    if not isinstance(data, dict):
        _logger.warning("Ignoring non-object streaming payload: %.200s", payload)
        return None
    return data


def feed(chunk: bytes | str, state: StreamingState) -> Iterator[dict[str, Any]]:
    """Append *chunk* and yield the payload of every line it completes.

    Lines are parsed lazily: each payload is handled by the caller before
    the next line is read, so a ``[DONE]`` later in the same chunk cannot
    close the state ahead of the events preceding it.
    """
    if isinstance(chunk, bytes):
        text = state.decoder.decode(chunk)
    else:
        text = chunk
    state.json_buffer += text

    while "\n" in state.json_buffer:
        line, state.json_buffer = state.json_buffer.split("\n", 1)
        data = parse_line(line, state)
        if data is not None:
            yield data


def flush(state: StreamingState) -> Iterator[dict[str, Any]]:
    """Yield whatever is left in the buffer once the body has ended."""
    remaining = state.json_buffer + state.decoder.decode(b"", final=True)
    state.json_buffer = ""
    if not remaining.strip():
        return

    _logger.debug("Processing remaining buffer: %.500s", remaining)
    for line in remaining.split("\n"):
        data = parse_line(line, state)
        if data is not None:
            yield data
