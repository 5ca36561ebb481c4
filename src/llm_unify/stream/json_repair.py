"""Best-effort repair of streamed tool-call argument strings.

These rules reproduce specific truncation patterns seen from providers.
They are not a general JSON recovery mechanism.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

_logger = logging.getLogger(__name__)

# Truncated "query" key: the stream lost the leading ``{"quer``.
_TRUNCATED_QUERY_KEY = re.compile(r"""^y["']?\s*:\s*["']""")


def _count_unescaped_quotes(text: str) -> int:
    count = 0
    escape = False
    for ch in text:
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
        elif ch == '"':
            count += 1
    return count


def fix_malformed_json(args: str) -> str:
    """Repair a complete arguments string so it has a chance to parse.

    The first applicable rule returns:

    1. empty / whitespace-only -> ``{}``
    2. truncated ``query`` key (``y": "...``) -> ``{"quer`` + s + ``}``
    3. missing both braces -> wrap
    4. missing opening brace -> prepend ``{``
    5. missing closing brace -> append ``}``
    6. odd number of unescaped quotes -> append ``"``

    The result may still be invalid JSON; callers go through
    :func:`parse_tool_arguments`, which never raises.
    """
    s = args.strip()
    if not s:
        return "{}"

    if _TRUNCATED_QUERY_KEY.match(s):
        return '{"quer' + s + "}"

    starts = s.startswith("{")
    ends = s.endswith("}")
    if not starts and not ends:
        return "{" + s + "}"
    if not starts:
        return "{" + s
    if not ends:
        return s + "}"

    if _count_unescaped_quotes(s) % 2 == 1:
        return s + '"'

    return s


def parse_tool_arguments(arguments: str | None) -> dict[str, Any]:
    """Turn an accumulated arguments string into a mapping.

    Repairs first, then parses.  Anything that does not end up as a JSON
    object degrades to ``{}``.
    """
    if arguments is None or not arguments.strip():
        return {}

    repaired = fix_malformed_json(arguments)
    try:
        parsed = json.loads(repaired)
    except json.JSONDecodeError as e:
        _logger.error(
            "Error parsing tool arguments: %s (raw: %.200s)", e, arguments,
        )
        return {}

    return parsed if isinstance(parsed, dict) else {}
