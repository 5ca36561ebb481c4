"""Tests for prompt-cache breakpoint placement."""

import copy

import pytest

from llm_unify.cache import (
    EPHEMERAL,
    CacheBreakpointPlanner,
    count_markers,
    ensure_string_content,
    mark_content,
)


def _conversation(length: int) -> list[dict]:
    roles = ["user", "assistant"]
    return [
        {"role": roles[i % 2], "content": f"message number {i}"}
        for i in range(length)
    ]


@pytest.fixture
def planner() -> CacheBreakpointPlanner:
    return CacheBreakpointPlanner(max_markers=4)


class TestSelect:
    def test_positional_triple(self, planner):
        history = _conversation(7)
        assert planner.select(history) == [0, 5, 6]

    def test_three_messages(self, planner):
        assert planner.select(_conversation(3)) == [0, 1, 2]

    def test_short_histories(self, planner):
        assert planner.select([]) == []
        assert planner.select(_conversation(1)) == [0]
        assert planner.select(_conversation(2)) == [0, 1]

    @pytest.mark.parametrize("length", range(1, 12))
    @pytest.mark.parametrize("max_markers", [1, 2, 3, 4, 5])
    def test_size_and_range_bounds(self, length, max_markers):
        planner = CacheBreakpointPlanner(max_markers=max_markers)
        selected = planner.select(_conversation(length))
        assert len(selected) <= max(0, max_markers - 1)
        assert all(0 <= i < length for i in selected)
        assert selected == sorted(set(selected))

    def test_cap_keeps_last_positions_first(self):
        history = _conversation(6)
        assert CacheBreakpointPlanner(max_markers=2).select(history) == [5]
        assert CacheBreakpointPlanner(max_markers=3).select(history) == [4, 5]
        assert CacheBreakpointPlanner(max_markers=1).select(history) == []

    def test_first_user_not_at_zero(self, planner):
        history = [
            {"role": "assistant", "content": "Welcome"},
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi"},
            {"role": "user", "content": "more"},
            {"role": "assistant", "content": "sure"},
        ]
        assert planner.select(history) == [1, 3, 4]

    def test_blank_target_walks_back(self, planner):
        history = [
            {"role": "user", "content": "a"},
            {"role": "assistant", "content": "b"},
            {"role": "user", "content": "c"},
            {"role": "assistant", "content": "   "},
        ]
        assert planner.select(history) == [0, 2]

    def test_tool_messages_never_selected(self, planner):
        history = [
            {"role": "user", "content": "what is 6*7?"},
            {"role": "assistant", "content": "", "tool_calls": [{"id": "c1"}]},
            {"role": "tool", "tool_call_id": "c1", "content": "42"},
        ]
        assert planner.select(history) == [0]

    def test_block_content_without_text_skipped(self, planner):
        history = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "second"},
            {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t", "content": "x"}]},
        ]
        assert planner.select(history) == [0, 1]

    def test_disabled(self):
        planner = CacheBreakpointPlanner(enabled=False)
        assert planner.select(_conversation(5)) == []


class TestApply:
    def test_string_content_becomes_marked_block(self, planner):
        result = planner.apply(_conversation(3))
        assert result[2]["content"] == [
            {"type": "text", "text": "message number 2", "cache_control": EPHEMERAL},
        ]
        assert count_markers(result) == 3

    def test_input_not_mutated(self, planner):
        history = _conversation(4)
        snapshot = copy.deepcopy(history)
        planner.apply(history)
        assert history == snapshot

    def test_unselected_messages_unchanged(self, planner):
        result = planner.apply(_conversation(6))
        assert result[2]["content"] == "message number 2"

    def test_marker_on_last_text_block_only(self, planner):
        history = [{
            "role": "user",
            "content": [
                {"type": "text", "text": "look at this"},
                {"type": "image", "source": {"type": "base64", "data": "AAAA"}},
                {"type": "text", "text": "and this"},
                {"type": "image", "source": {"type": "base64", "data": "BBBB"}},
            ],
        }]
        content = planner.apply(history)[0]["content"]
        assert "cache_control" not in content[0]
        assert content[2]["cache_control"] == EPHEMERAL
        assert "cache_control" not in content[3]

    def test_existing_markers_stripped(self, planner):
        history = [
            {"role": "user", "content": [{"type": "text", "text": f"m{i}", "cache_control": EPHEMERAL}]}
            for i in range(8)
        ]
        result = planner.apply(history)
        assert count_markers(result) == 3

    def test_tool_content_forced_to_string(self, planner):
        history = [
            {"role": "user", "content": "go"},
            {"role": "tool", "tool_call_id": "c", "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]},
        ]
        result = planner.apply(history)
        assert result[1]["content"] == "a\nb"
        assert result[1]["tool_call_id"] == "c"

    def test_none_content_becomes_empty_string(self, planner):
        history = [{"role": "user", "content": "q"}, {"role": "assistant", "content": None}]
        assert planner.apply(history)[1]["content"] == ""

    def test_tool_calls_preserved(self, planner):
        calls = [{"id": "c1", "type": "function", "function": {"name": "x", "arguments": "{}"}}]
        history = [{"role": "user", "content": "q"}, {"role": "assistant", "content": "", "tool_calls": calls}]
        assert planner.apply(history)[1]["tool_calls"] == calls


class TestSystemBlocks:
    def test_simple_strings_joined_and_marked(self, planner):
        blocks = planner.system_blocks(["You are helpful.", {"text": "Be brief."}])
        assert blocks == [
            {"type": "text", "text": "You are helpful.\nBe brief.", "cache_control": EPHEMERAL},
        ]

    def test_complex_messages_mark_last_text_block(self, planner):
        system = [
            {"role": "system", "content": [{"type": "text", "text": "one"}]},
            {"role": "system", "content": [
                {"type": "text", "text": "two"},
                {"type": "file", "file": {"filename": "a.pdf", "file_data": "..."}},
            ]},
        ]
        blocks = planner.system_blocks(system)
        assert [b.get("cache_control") for b in blocks] == [None, EPHEMERAL, None]

    def test_empty(self, planner):
        assert planner.system_blocks([]) == []

    def test_disabled_leaves_unmarked(self):
        blocks = CacheBreakpointPlanner(enabled=False).system_blocks(["x"])
        assert blocks == [{"type": "text", "text": "x"}]

    def test_total_markers_within_provider_limit(self, planner):
        system = planner.system_blocks(["sys"])
        history = planner.apply(_conversation(20))
        total = count_markers([{"content": system}]) + count_markers(history)
        assert total <= planner.max_markers


class TestHelpers:
    def test_mark_content_without_text_block(self):
        content = [{"type": "image", "source": {}}]
        assert mark_content(content) is content

    def test_ensure_string_content(self):
        assert ensure_string_content(None) == ""
        assert ensure_string_content("x") == "x"
        assert ensure_string_content([{"text": "a"}, {"type": "image"}, {"text": "b"}]) == "a\nb"
