"""Streaming primitives: SSE line buffering, tool-call merging, JSON repair."""

from llm_unify.stream.accumulator import ToolCallAccumulator, finalize, merge
from llm_unify.stream.json_repair import fix_malformed_json, parse_tool_arguments
from llm_unify.stream.sse import feed, flush

__all__ = [
    "ToolCallAccumulator",
    "feed",
    "finalize",
    "fix_malformed_json",
    "flush",
    "merge",
    "parse_tool_arguments",
]
