"""Tests for mapping provider payloads to CanonicalResponse."""

from llm_unify.standardize import (
    from_streaming_state,
    standardize_anthropic,
    standardize_chat_completion,
)
from llm_unify.stream.accumulator import merge
from llm_unify.types import StreamingState, ToolCall, UsageInfo


class TestChatCompletion:
    def test_plain_text(self):
        payload = {
            "id": "gen-1",
            "model": "openai/gpt-4o",
            "choices": [{"message": {"role": "assistant", "content": "Hi"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 1},
        }
        resp = standardize_chat_completion(payload)
        assert resp.content == "Hi"
        assert resp.model == "openai/gpt-4o"
        assert resp.generation_id == "gen-1"
        assert resp.finish_reason == "stop"
        assert resp.stop_reason == "stop"
        assert resp.usage.total_tokens == 6
        assert not resp.has_tool_calls

    def test_null_content_and_tool_calls(self):
        payload = {
            "model": "m",
            "choices": [{
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "search", "arguments": '{"query": "cats"}'},
                    }],
                },
                "finish_reason": "tool_calls",
            }],
        }
        resp = standardize_chat_completion(payload)
        assert resp.content == ""
        assert resp.tool_calls == (ToolCall(name="search", input={"query": "cats"}, id="call_1"),)
        assert resp.usage is None

    def test_decoded_argument_objects(self):
        payload = {"choices": [{"message": {"tool_calls": [
            {"id": "a", "function": {"name": "one", "arguments": {"x": 1}}},
            {"id": "b", "function": {"name": "two", "arguments": ""}},
        ]}}]}
        resp = standardize_chat_completion(payload)
        assert [tc.input for tc in resp.tool_calls] == [{"x": 1}, {}]

    def test_list_content_joined(self):
        payload = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]}
        assert standardize_chat_completion(payload).content == "ab"

    def test_missing_choices(self):
        resp = standardize_chat_completion({"model": "m"})
        assert resp.content == ""
        assert resp.tool_calls == ()
        assert resp.finish_reason is None


class TestAnthropic:
    def test_text_and_tool_use(self):
        payload = {
            "id": "msg_1",
            "model": "claude-sonnet-4",
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Let me look. "},
                {"type": "tool_use", "id": "toolu_1", "name": "search", "input": {"query": "cats"}},
                {"type": "text", "text": "Done."},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 10, "output_tokens": 7, "cache_read_input_tokens": 4},
        }
        resp = standardize_anthropic(payload)
        assert resp.content == "Let me look. Done."
        assert resp.tool_calls == (ToolCall(name="search", input={"query": "cats"}, id="toolu_1"),)
        assert resp.stop_reason == "tool_use"
        assert resp.finish_reason == "tool_use"
        assert resp.generation_id == "msg_1"
        assert resp.usage.prompt_tokens == 10
        assert resp.usage.completion_tokens == 7
        assert resp.usage.total_tokens == 17
        assert resp.usage.cache_read_input_tokens == 4

    def test_string_input_parsed(self):
        payload = {"content": [{"type": "tool_use", "id": "t", "name": "n", "input": '{"a": 1'}]}
        assert standardize_anthropic(payload).tool_calls[0].input == {"a": 1}

    def test_stop_sequence(self):
        payload = {"content": [], "stop_reason": "stop_sequence", "stop_sequence": "END"}
        resp = standardize_anthropic(payload)
        assert resp.stop_sequence == "END"
        assert resp.content == ""


class TestFromStreamingState:
    def test_finished_stream(self):
        state = StreamingState()
        state.accumulated_content = "Hello"
        state.set_identity("model-x", "gen-9")
        state.usage = UsageInfo.from_mapping({"prompt_tokens": 3, "completion_tokens": 2})
        merge({"index": 0, "id": "c1", "function": {"name": "f", "arguments": "{}"}}, state.tool_calls)
        state.finish("tool_calls")

        resp = from_streaming_state(state, requested_model="requested")
        assert resp.content == "Hello"
        assert resp.model == "model-x"
        assert resp.generation_id == "gen-9"
        assert resp.finish_reason == "tool_calls"
        assert resp.tool_calls == (ToolCall(name="f", input={}, id="c1"),)
        assert resp.usage.total_tokens == 5

    def test_requested_model_fallback(self):
        resp = from_streaming_state(StreamingState(), requested_model="requested")
        assert resp.model == "requested"
        assert resp.content == ""
        assert resp.finish_reason is None

    def test_in_band_error(self):
        state = StreamingState()
        state.accumulated_content = "partial"
        state.last_error = "Provider returned error"
        resp = from_streaming_state(state)
        assert resp.finish_reason == "error"
        assert resp.content == "partial"

    def test_error_after_finish_reason_wins(self):
        state = StreamingState()
        state.finish("tool_calls")
        state.last_error = "Overloaded"
        resp = from_streaming_state(state)
        assert resp.finish_reason == "error"
        assert resp.stop_reason == "error"
