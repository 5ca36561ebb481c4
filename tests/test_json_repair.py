"""Tests for tool-argument repair and parsing."""

import json

import pytest

from llm_unify.stream.json_repair import fix_malformed_json, parse_tool_arguments


class TestFixMalformedJson:
    @pytest.mark.parametrize("raw", ["", "   ", "\n\t"])
    def test_empty_becomes_object(self, raw):
        assert fix_malformed_json(raw) == "{}"

    def test_missing_both_braces(self):
        assert fix_malformed_json('"a": 1') == '{"a": 1}'

    def test_missing_opening_brace(self):
        assert fix_malformed_json('"a": 1}') == '{"a": 1}'

    def test_missing_closing_brace(self):
        assert fix_malformed_json('{"a": 1') == '{"a": 1}'

    def test_truncated_query_key(self):
        assert fix_malformed_json('y": "partial') == '{"query": "partial}'

    def test_truncated_query_key_with_single_quotes(self):
        assert fix_malformed_json("y': 'x").startswith('{"quer')

    def test_odd_quote_count_closed(self):
        assert fix_malformed_json('{"a": "b}') == '{"a": "b}"'

    def test_escaped_quotes_not_counted(self):
        raw = '{"s": "say \\"hi\\""}'
        assert fix_malformed_json(raw) == raw

    def test_surrounding_whitespace_stripped(self):
        assert fix_malformed_json('  {"a": 1}  ') == '{"a": 1}'

    @pytest.mark.parametrize(
        "valid",
        [
            "{}",
            '{"a": 1}',
            '{"query": "cats"}',
            '{"nested": {"list": [1, 2, {"x": "y"}]}}',
            '{"s": "quote \\" inside"}',
            '{"path": "C:\\\\dir\\\\"}',
            "[1, 2, 3]",
            '"just a string"',
            "42",
        ],
    )
    def test_idempotent_on_valid_json(self, valid):
        json.loads(valid)
        once = fix_malformed_json(valid)
        assert fix_malformed_json(once) == once

    def test_valid_objects_unchanged(self):
        raw = '{"command": "ls -la", "timeout": 30}'
        assert fix_malformed_json(raw) == raw


class TestParseToolArguments:
    def test_none_and_blank(self):
        assert parse_tool_arguments(None) == {}
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("   ") == {}

    def test_valid_object(self):
        assert parse_tool_arguments('{"query":"cats"}') == {"query": "cats"}

    def test_repaired_before_parsing(self):
        assert parse_tool_arguments('"q": "x"') == {"q": "x"}
        assert parse_tool_arguments('{"q": "x"') == {"q": "x"}

    def test_unparseable_degrades_to_empty(self):
        assert parse_tool_arguments("not json at all") == {}

    def test_non_object_degrades_to_empty(self):
        # Arrays are wrapped in braces by repair, which no longer parses
        assert parse_tool_arguments("[1, 2]") == {}

    def test_never_raises(self):
        for raw in ['{"a": ', "}}}", '{"a": "b}', "y': 'x", "\x00"]:
            assert isinstance(parse_tool_arguments(raw), dict)
