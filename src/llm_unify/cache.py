"""Prompt-cache breakpoint placement.

Provider caches are prefix-based: a marker on message *i* makes everything
up to *i* a cacheable unit, and a later request only hits the cache when
it places a marker at the same absolute position.  Placement is therefore
positional:

* the first user message anchors a prefix shared by every turn;
* the second-to-last message reads what the previous turn wrote;
* the last message writes for the next turn.

The system prompt gets one marker of its own, which is why the history cap
is the provider limit minus one.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable, Mapping, Sequence

_logger = logging.getLogger(__name__)

EPHEMERAL: dict[str, str] = {"type": "ephemeral"}


# ---------------------------------------------------------------------------
# Content helpers
# ---------------------------------------------------------------------------

def block_text(block: Any) -> str | None:
    if isinstance(block, Mapping):
        text = block.get("text")
        return text if isinstance(text, str) else None
    return None


def has_text(content: Any) -> bool:
    """True when *content* holds at least one non-blank text part."""
    if isinstance(content, str):
        return bool(content.strip())
    if isinstance(content, list):
        return any(
            isinstance(b, Mapping) and b.get("type", "text") == "text"
            and (block_text(b) or "").strip()
            for b in content
        )
    return False


def ensure_string_content(content: Any) -> str:
    """Flatten block content into a plain string (markers are lost)."""
    if content is None:
        return ""
    if isinstance(content, list):
        parts = [block_text(b) for b in content]
        return "\n".join(p for p in parts if p is not None)
    return str(content)


def _strip_markers(content: Any) -> Any:
    if not isinstance(content, list):
        return content
    cleaned = []
    for block in content:
        if isinstance(block, Mapping) and "cache_control" in block:
            block = {k: v for k, v in block.items() if k != "cache_control"}
        cleaned.append(block)
    return cleaned


def mark_content(content: Any) -> Any:
    """Attach a cache marker to the last text block of *content*.

    String content becomes a one-block array.  Tool and image blocks are
    never marked; content without a text block is returned unchanged.
    """
    if isinstance(content, str):
        return [{"type": "text", "text": content, "cache_control": dict(EPHEMERAL)}]
    if not isinstance(content, list):
        return content

    last_text = None
    for idx, block in enumerate(content):
        if isinstance(block, Mapping) and block.get("type", "text") == "text":
            last_text = idx
    if last_text is None:
        return content

    marked = list(content)
    block = dict(marked[last_text])
    block["cache_control"] = dict(EPHEMERAL)
    marked[last_text] = block
    return marked


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

class CacheBreakpointPlanner:
    """Choose and apply cache markers for one outbound request.

    Parameters
    ----------
    max_markers:
        Provider cap on markers per request, system prompt included.
    enabled:
        When False, nothing is marked (string-only roles are still coerced).
    string_only_roles:
        Roles whose content must be a plain string for this provider; such
        messages are never marked.
    """

    def __init__(
        self,
        max_markers: int = 4,
        enabled: bool = True,
        string_only_roles: Iterable[str] = ("tool",),
    ) -> None:
        self.max_markers = max_markers
        self.enabled = enabled
        self.string_only_roles = frozenset(string_only_roles)

    @property
    def history_cap(self) -> int:
        return max(0, self.max_markers - 1)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _markable(self, message: Mapping[str, Any]) -> bool:
        if message.get("role") in self.string_only_roles:
            return False
        return has_text(message.get("content"))

    def _resolve(
        self,
        history: Sequence[Mapping[str, Any]],
        target: int,
        taken: list[int],
    ) -> int | None:
        """Nearest markable index at or before *target* not already taken."""
        for idx in range(target, -1, -1):
            if idx in taken:
                continue
            if self._markable(history[idx]):
                return idx
        return None

    def select(self, history: Sequence[Mapping[str, Any]]) -> list[int]:
        """Return the sorted message indices to mark (size <= history cap)."""
        length = len(history)
        cap = self.history_cap
        if not self.enabled or length == 0 or cap == 0:
            return []

        first_user = next(
            (i for i, m in enumerate(history) if m.get("role") == "user"), None,
        )
        # Priority order when the cap is smaller than the number of targets
        targets = [length - 1, length - 2, first_user]

        chosen: list[int] = []
        for target in targets:
            if target is None or target < 0:
                continue
            if target in chosen:
                continue
            idx = self._resolve(history, target, chosen)
            if idx is not None:
                chosen.append(idx)
            if len(chosen) >= cap:
                break
        return sorted(chosen)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply(self, history: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Return a marked copy of *history*; the input is left untouched."""
        indices = set(self.select(history))
        result: list[dict[str, Any]] = []

        for idx, message in enumerate(history):
            fixed = copy.deepcopy(dict(message))
            content = _strip_markers(fixed.get("content"))

            if fixed.get("role") in self.string_only_roles:
                fixed["content"] = ensure_string_content(content)
                result.append(fixed)
                continue

            if content is None:
                content = ""
            if idx in indices:
                content = mark_content(content)
            fixed["content"] = content
            result.append(fixed)

        if indices:
            _logger.info(
                "[CONVERSATION CACHE] Cache breakpoints at: %s",
                ", ".join(f"msg[{i}] ({history[i].get('role')})" for i in sorted(indices)),
            )
        else:
            _logger.info("[CONVERSATION CACHE] No cache_control applied to conversation history")
        return result

    def system_blocks(self, system_messages: Sequence[Any]) -> list[dict[str, Any]]:
        """Normalize system messages to content blocks and mark the last text one.

        Accepts plain strings, ``{"text": ...}`` mappings, or already-built
        ``{"role": ..., "content": [blocks]}`` messages.
        """
        blocks: list[dict[str, Any]] = []
        simple_parts: list[str] = []

        for msg in system_messages:
            if isinstance(msg, Mapping) and isinstance(msg.get("content"), list):
                if simple_parts:
                    blocks.append({"type": "text", "text": "\n".join(simple_parts)})
                    simple_parts = []
                for block in _strip_markers(copy.deepcopy(msg["content"])):
                    if isinstance(block, Mapping):
                        blocks.append(dict(block))
            elif isinstance(msg, Mapping):
                text = msg.get("text", msg.get("content"))
                if text:
                    simple_parts.append(str(text))
            elif msg:
                simple_parts.append(str(msg))
        if simple_parts:
            blocks.append({"type": "text", "text": "\n".join(simple_parts)})

        if self.enabled and self.max_markers > 0 and blocks:
            marked = mark_content(blocks)
            if marked is not blocks:
                _logger.info("[SYSTEM CACHE] Applied cache_control to last system text block")
            blocks = marked
        return blocks


def count_markers(messages: Iterable[Mapping[str, Any]]) -> int:
    """Count content blocks carrying a cache marker."""
    total = 0
    for message in messages:
        content = message.get("content")
        if isinstance(content, list):
            total += sum(
                1 for b in content if isinstance(b, Mapping) and b.get("cache_control")
            )
    return total
