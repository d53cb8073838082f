"""Tests for the per-engine grammar decoders."""

from __future__ import annotations

import json
from typing import Any

import pytest

from clirelay.stream import (
    DoneEvent,
    ErrorEvent,
    ResponseChunkEvent,
    ResponseDoneEvent,
    StatusEvent,
    StreamParser,
    get_grammar,
)
from clirelay.stream.decoders import GRAMMARS
from clirelay.stream.decoders.gemini import filter_thinking

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _parse(engine: str, *records: dict[str, Any]) -> tuple[StreamParser, list[Any]]:
    """Feed *records* as JSON lines; return the parser and its events."""
    parser = StreamParser(get_grammar(engine), clock=lambda: "2025-01-01T00:00:00.000Z")
    data = "".join(json.dumps(r) + "\n" for r in records)
    events = parser.consume(data)
    events.extend(parser.close())
    return parser, events


def _messages(events: list[Any]) -> list[str]:
    return [e.message for e in events if isinstance(e, StatusEvent)]


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #


class TestGrammarRegistry:
    def test_all_engines_registered(self) -> None:
        assert set(GRAMMARS) == {"claude", "gemini", "codex", "qwen"}

    def test_text_modes(self) -> None:
        assert GRAMMARS["claude"].text_mode == "replace"
        assert GRAMMARS["codex"].text_mode == "replace"
        assert GRAMMARS["gemini"].text_mode == "append"
        assert GRAMMARS["qwen"].text_mode == "append"

    def test_unknown_engine(self) -> None:
        with pytest.raises(KeyError, match="known: claude, codex, gemini, qwen"):
            get_grammar("cursor")


# ------------------------------------------------------------------ #
# Claude (correlated blocks)
# ------------------------------------------------------------------ #


class TestClaudeDecoder:
    def test_tool_round_trip_scenario(self) -> None:
        parser, events = _parse(
            "claude",
            {"type": "system", "subtype": "init", "session_id": "s-1", "model": "m"},
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "tool_use", "id": "t1", "tool": "Bash", "command": "ls"}
                    ]
                },
            },
            {
                "type": "user",
                "message": {
                    "content": [
                        {"type": "tool_result", "tool_use_id": "t1", "content": "file1\nfile2"}
                    ]
                },
            },
            {"type": "result", "usage": {"input_tokens": 10, "output_tokens": 5}},
        )

        assert [e.type for e in events] == [
            "status",
            "status",
            "status",
            "response_done",
            "done",
        ]
        assert events[0].category == "system"
        assert events[0].message == "Session initialized"
        assert events[0].session_id == "s-1"
        assert events[1].category == "tool"
        assert events[1].message == "Bash: ls"
        assert events[2].message == "Bash: completed"
        assert events[2].tool_output == "file1\nfile2"
        done = events[4]
        assert isinstance(done, DoneEvent)
        assert done.usage.total_tokens == 15
        assert done.native_session_id == "s-1"
        assert parser.state.pending_tools == {}

    def test_parsers_alternating_keep_separate_tools(self) -> None:
        def records(name: str, tool_input: dict[str, Any]) -> list[dict[str, Any]]:
            return [
                {
                    "type": "assistant",
                    "message": {
                        "content": [{"type": "tool_use", "id": "t1", "name": name, "input": tool_input}]
                    },
                },
                {
                    "type": "user",
                    "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]},
                },
            ]

        first = StreamParser(get_grammar("claude"))
        second = StreamParser(get_grammar("claude"))
        first_events: list[Any] = []
        second_events: list[Any] = []
        for a, b in zip(records("Bash", {"command": "ls"}), records("Read", {"file_path": "/x"})):
            first_events.extend(first.consume(json.dumps(a) + "\n"))
            second_events.extend(second.consume(json.dumps(b) + "\n"))

        assert _messages(first_events) == ["Bash: ls", "Bash: completed"]
        assert _messages(second_events) == ["Reading: /x", "Read: completed"]
        assert first.state.pending_tools == second.state.pending_tools == {}

    def test_text_blocks_replace(self) -> None:
        parser, events = _parse(
            "claude",
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "draft"}]}},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "final"}]}},
        )
        chunks = [e for e in events if isinstance(e, ResponseChunkEvent)]
        assert [c.text for c in chunks] == ["draft", "final"]
        assert all(not c.is_incremental for c in chunks)
        assert parser.final_response() == "final"

    def test_string_content(self) -> None:
        parser, _ = _parse("claude", {"type": "assistant", "message": {"content": "hi"}})
        assert parser.final_response() == "hi"

    def test_result_text_used_when_no_blocks(self) -> None:
        parser, events = _parse("claude", {"type": "result", "result": "answer"})
        done_text = [e for e in events if isinstance(e, ResponseDoneEvent)][0]
        assert done_text.full_text == "answer"
        assert parser.final_response() == "answer"

    def test_usage_with_cache_and_cost(self) -> None:
        parser, _ = _parse(
            "claude",
            {
                "type": "result",
                "duration_ms": 1234,
                "total_cost_usd": 0.0125,
                "usage": {
                    "input_tokens": 7,
                    "output_tokens": 3,
                    "cache_read_input_tokens": 100,
                    "cache_creation_input_tokens": 20,
                },
            },
        )
        usage = parser.usage()
        assert usage.total_tokens == 10
        assert usage.cache_read_tokens == 100
        assert usage.cache_creation_tokens == 20
        assert usage.cost_usd == pytest.approx(0.0125)
        terminal = parser.terminal_event()
        assert isinstance(terminal, DoneEvent)
        assert terminal.duration_ms == 1234

    def test_error_result(self) -> None:
        parser, events = _parse(
            "claude",
            {"type": "result", "is_error": True, "result": "API Error: overloaded"},
        )
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert parser.error_message() == "API Error: overloaded"

    def test_tool_result_error_detection(self) -> None:
        _, events = _parse(
            "claude",
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "tool_use", "id": "r1", "name": "Read", "input": {"file_path": "/x"}},
                        {"type": "tool_use", "id": "r2", "name": "Read", "input": {"file_path": "/y"}},
                    ]
                },
            },
            {
                "type": "user",
                "message": {
                    "content": [
                        {"type": "tool_result", "tool_use_id": "r1", "content": "Error: no such file"},
                        {"type": "tool_result", "tool_use_id": "r2", "content": "ok", "is_error": True},
                    ]
                },
            },
        )
        errors = [e for e in events if isinstance(e, StatusEvent) and e.icon == "❌"]
        assert [e.message for e in errors] == ["Read: error", "Read: error"]

    def test_list_content_flattened(self) -> None:
        _, events = _parse(
            "claude",
            {
                "type": "user",
                "message": {
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": "zz",
                            "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}],
                        }
                    ]
                },
            },
        )
        assert events[0].message == "Tool: completed"
        assert events[0].tool_output == "a\nb"

    def test_todo_write(self) -> None:
        todos = [
            {"content": "x", "status": "completed"},
            {"content": "y", "status": "pending"},
        ]
        _, events = _parse(
            "claude",
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "tool_use", "id": "td", "name": "TodoWrite", "input": {"todos": todos}}
                    ]
                },
            },
            {
                "type": "user",
                "message": {"content": [{"type": "tool_result", "tool_use_id": "td", "content": "ok"}]},
            },
        )
        assert _messages(events) == [
            "Updating todos (2: 1✓ 0⚡ 1○)",
            "Todos updated (2: 1✓ 0⚡ 1○)",
        ]
        assert events[0].payload == todos
        assert events[1].payload == todos

    def test_thinking_block(self) -> None:
        _, events = _parse(
            "claude",
            {
                "type": "assistant",
                "message": {"content": [{"type": "thinking", "thinking": "Consider the cases"}]},
            },
        )
        assert events[0].category == "reasoning"
        assert events[0].message == "Thinking: Consider the cases"

    def test_unknown_record_ignored(self) -> None:
        parser, events = _parse("claude", {"type": "rate_limit_event"}, {"foo": 1})
        assert events == []
        assert parser.state.response_text == ""


# ------------------------------------------------------------------ #
# Gemini (flat lifecycle)
# ------------------------------------------------------------------ #


class TestGeminiDecoder:
    def test_delta_messages_accumulate(self) -> None:
        parser, events = _parse(
            "gemini",
            {"type": "message", "role": "assistant", "content": "Hel", "delta": True},
            {"type": "message", "role": "assistant", "content": "lo", "delta": True},
        )
        assert parser.final_response() == "Hello"
        assert [e.is_incremental for e in events] == [True, True]

    def test_non_delta_replaces(self) -> None:
        parser, _ = _parse(
            "gemini",
            {"type": "message", "role": "assistant", "content": "partial", "delta": True},
            {"type": "message", "role": "assistant", "content": "whole"},
        )
        assert parser.final_response() == "whole"

    def test_user_messages_ignored(self) -> None:
        parser, events = _parse(
            "gemini", {"type": "message", "role": "user", "content": "prompt"}
        )
        assert events == []
        assert parser.final_response() == ""

    def test_init_and_tools(self) -> None:
        parser, events = _parse(
            "gemini",
            {"type": "init", "session_id": "g-9", "model": "gemini-3-pro-preview"},
            {
                "type": "tool_use",
                "tool_name": "run_shell_command",
                "tool_id": "c1",
                "parameters": {"command": "ls"},
            },
            {"type": "tool_result", "tool_id": "c1", "status": "success", "output": "a.txt"},
            {"type": "tool_result", "tool_id": "c2", "status": "error"},
        )
        assert _messages(events) == [
            "Session initialized",
            "Shell: ls",
            "run_shell_command: completed",
            "Tool: failed",
        ]
        assert events[0].model == "gemini-3-pro-preview"
        assert parser.native_session_id() == "g-9"
        assert parser.state.pending_tools == {}

    def test_result_stats(self) -> None:
        parser, events = _parse(
            "gemini",
            {"type": "message", "role": "assistant", "content": "ok", "delta": True},
            {
                "type": "result",
                "status": "success",
                "stats": {
                    "input_tokens": 3,
                    "output_tokens": 4,
                    "total_tokens": 9,
                    "duration_ms": 120,
                    "tool_calls": 1,
                },
            },
        )
        done = events[-1]
        assert isinstance(done, DoneEvent)
        assert done.usage.prompt_tokens == 3
        assert done.usage.total_tokens == 9
        assert done.duration_ms == 120
        assert done.tool_calls == 1
        assert done.status == "success"
        assert isinstance(events[-2], ResponseDoneEvent)
        assert events[-2].full_text == "ok"

    def test_failed_result(self) -> None:
        _, events = _parse(
            "gemini",
            {"type": "result", "status": "error", "error": {"message": "quota exceeded"}},
        )
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].message == "quota exceeded"

    def test_error_records(self) -> None:
        parser, events = _parse(
            "gemini",
            {"type": "error", "severity": "warning", "message": "retrying"},
            {"type": "error", "message": "fatal"},
        )
        assert events[0].category == "warning"
        assert isinstance(events[1], ErrorEvent)
        assert parser.error_message() == "fatal"

    def test_thinking_lines_filtered(self) -> None:
        text = "Let me check the files.\nHere is the answer.\nOkay."
        assert filter_thinking(text) == "Here is the answer."

    def test_blank_runs_collapsed(self) -> None:
        assert filter_thinking("a\n\n\n\nb") == "a\n\nb"

    def test_final_response_filtered(self) -> None:
        parser, _ = _parse(
            "gemini",
            {
                "type": "message",
                "role": "assistant",
                "content": "Wait, I should re-read.\nThe fix is in parser.py.",
                "delta": True,
            },
        )
        assert parser.final_response() == "The fix is in parser.py."


# ------------------------------------------------------------------ #
# Codex (phases)
# ------------------------------------------------------------------ #


class TestCodexDecoder:
    def test_full_turn(self) -> None:
        parser, events = _parse(
            "codex",
            {"type": "thread.started", "thread_id": "th-1"},
            {"type": "turn.started"},
            {"type": "item.completed", "item": {"id": "0", "type": "reasoning", "text": "Planning"}},
            {
                "type": "item.started",
                "item": {"id": "1", "type": "command_execution", "command": "ls", "status": "in_progress"},
            },
            {
                "type": "item.completed",
                "item": {
                    "id": "1",
                    "type": "command_execution",
                    "command": "ls",
                    "exit_code": 0,
                    "aggregated_output": "a.py\n",
                },
            },
            {"type": "item.completed", "item": {"id": "2", "type": "agent_message", "text": "Done."}},
            {
                "type": "turn.completed",
                "usage": {"input_tokens": 100, "cached_input_tokens": 50, "output_tokens": 20},
            },
        )
        assert _messages(events) == [
            "Session started",
            "Thinking: Planning",
            "Bash: ls",
            "Bash: ls - completed",
        ]
        assert [e.type for e in events][-3:] == ["response_chunk", "response_done", "done"]
        assert parser.final_response() == "Done."
        usage = parser.usage()
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (100, 20, 120)
        assert usage.cached_tokens == 50
        assert parser.native_session_id() == "th-1"
        assert parser.state.pending_tools == {}

    def test_failed_command(self) -> None:
        _, events = _parse(
            "codex",
            {
                "type": "item.completed",
                "item": {"id": "1", "type": "command_execution", "command": "make", "exit_code": 2},
            },
        )
        assert events[0].message == "Bash: make - failed (2)"
        assert events[0].icon == "❌"

    def test_turn_failed_string(self) -> None:
        parser, events = _parse("codex", {"type": "turn.failed", "error": "boom"})
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].message == "boom"
        assert not any(isinstance(e, DoneEvent) for e in events)
        assert parser.error_message() == "boom"

    def test_turn_failed_object(self) -> None:
        _, events = _parse("codex", {"type": "turn.failed", "error": {"message": "limit"}})
        assert events[0].message == "limit"

    def test_file_items(self) -> None:
        _, events = _parse(
            "codex",
            {"type": "item.completed", "item": {"type": "file_read", "path": "a.py"}},
            {"type": "item.completed", "item": {"type": "file_write", "path": "b.py"}},
            {
                "type": "item.completed",
                "item": {"type": "file_change", "changes": [{"path": "c.py"}, {"path": "d.py"}]},
            },
            {"type": "item.completed", "item": {"type": "mcp_tool_call", "tool": "search"}},
        )
        assert _messages(events) == [
            "Reading: a.py",
            "Writing: b.py",
            "Editing: c.py, d.py",
            "MCP: search",
        ]

    def test_stream_error_is_warning(self) -> None:
        parser, events = _parse("codex", {"type": "error", "message": "Reconnecting... 1/5"})
        assert events[0].category == "warning"
        assert parser.terminal_event() is None


# ------------------------------------------------------------------ #
# Qwen (hybrid)
# ------------------------------------------------------------------ #


def _delta(text: str) -> dict[str, Any]:
    return {
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}},
    }


class TestQwenDecoder:
    def test_partial_deltas_not_duplicated(self) -> None:
        parser, events = _parse(
            "qwen",
            _delta("Hel"),
            _delta("lo"),
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hello"}]}},
        )
        chunks = [e for e in events if isinstance(e, ResponseChunkEvent)]
        assert [c.text for c in chunks] == ["Hel", "lo"]
        assert all(c.is_incremental for c in chunks)
        assert parser.final_response() == "Hello"

    def test_block_text_appended_once_without_partials(self) -> None:
        parser, events = _parse(
            "qwen",
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "A"}]}},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "B"}]}},
        )
        assert parser.final_response() == "AB"
        assert [e.is_incremental for e in events] == [False, False]

    def test_tool_use_deduplicated(self) -> None:
        block = {"type": "tool_use", "id": "q1", "name": "read_file", "input": {"path": "x.md"}}
        _, events = _parse(
            "qwen",
            {"type": "stream_event", "event": {"type": "content_block_start", "content_block": block}},
            {"type": "assistant", "message": {"content": [block]}},
            {
                "type": "user",
                "message": {"content": [{"type": "tool_result", "tool_use_id": "q1", "content": "data"}]},
            },
        )
        assert _messages(events) == ["Reading: x.md", "read_file: completed"]

    def test_result(self) -> None:
        parser, events = _parse(
            "qwen",
            {"type": "system", "subtype": "init", "session_id": "qs", "model": "coder-model"},
            {
                "type": "result",
                "result": "fallback",
                "duration_ms": 50,
                "usage": {"input_tokens": 1, "output_tokens": 2, "total_tokens": 10},
            },
        )
        assert parser.final_response() == "fallback"
        done = events[-1]
        assert isinstance(done, DoneEvent)
        assert done.usage.total_tokens == 10
        assert done.duration_ms == 50
        assert done.native_session_id == "qs"

    def test_error_result(self) -> None:
        _, events = _parse("qwen", {"type": "result", "is_error": True, "error": {"message": "bad"}})
        assert isinstance(events[0], ErrorEvent)
        assert events[0].message == "bad"
