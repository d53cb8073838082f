"""Decoder for the Codex ``exec --json`` grammar.

A turn runs through phases: ``thread.started`` -> ``turn.started`` ->
``item.started`` / ``item.completed`` -> ``turn.completed`` or
``turn.failed``. Only ``agent_message`` items contribute response text.
"""

from __future__ import annotations

import logging
from typing import Any

from clirelay.stream.events import (
    DoneEvent,
    ErrorEvent,
    NormalizedEvent,
    ResponseChunkEvent,
    ResponseDoneEvent,
    Usage,
)
from clirelay.stream.state import Grammar, ParserState, as_dict
from clirelay.stream.tools import PLUGIN_ICON, truncate, truncate_output

logger = logging.getLogger(__name__)

#: Item types that announce file access, with their label and icon.
_FILE_ITEMS: dict[str, tuple[str, str]] = {
    "file_read": ("Reading", "📖"),
    "file_write": ("Writing", "✍️"),
    "file_edit": ("Editing", "📝"),
}


def decode(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    """Map one Codex record to normalized events."""
    record_type = record.get("type")

    if record_type == "thread.started":
        thread_id = record.get("thread_id")
        if isinstance(thread_id, str) and thread_id:
            state.native_session_id = thread_id
        logger.info("codex: thread started: %s", state.native_session_id)
        return [
            state.status(
                "system",
                "Session started",
                "🚀",
                session_id=state.native_session_id,
            )
        ]
    if record_type == "turn.started":
        return []
    if record_type == "item.started":
        return _item_started(as_dict(record.get("item")), state)
    if record_type == "item.completed":
        return _item_completed(as_dict(record.get("item")), state)
    if record_type == "turn.completed":
        return _turn_completed(record, state)
    if record_type == "turn.failed":
        message = _error_text(record.get("error"))
        logger.error("codex: turn failed: %s", message)
        return [ErrorEvent(message=message, category="engine")]
    if record_type == "error":
        # Stream-level errors (reconnect notices) do not end the turn.
        message = _error_text(record.get("message") or record.get("error"))
        logger.warning("codex: %s", message)
        return [state.status("warning", message, "⚠️")]

    logger.debug("codex: ignoring record type %r", record_type)
    return []


def _error_text(value: Any) -> str:
    if isinstance(value, str) and value:
        return value
    message = as_dict(value).get("message")
    if isinstance(message, str) and message:
        return message
    return "Unknown error"


def _item_started(item: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    if item.get("type") != "command_execution":
        return []
    command = item.get("command") or "Unknown command"
    item_id = item.get("id")
    if item_id is not None:
        state.pending_tools[str(item_id)] = {"name": "Bash", "input": item}
    return [state.status("tool", f"Bash: {truncate(command, 60)}", "🔧")]


def _item_completed(
    item: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    item_type = item.get("type")

    if item_type == "reasoning":
        text = item.get("text")
        if isinstance(text, str) and text.strip():
            return [
                state.status("reasoning", f"Thinking: {truncate(text, 50)}", "🧠")
            ]
        return []

    if item_type == "command_execution":
        return [_command_completed(item, state)]

    if item_type == "agent_message":
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            return []
        state.response_text = text
        return [ResponseChunkEvent(text=text, is_incremental=False)]

    if item_type in _FILE_ITEMS:
        label, icon = _FILE_ITEMS[item_type]
        return [state.status("tool", f"{label}: {truncate(item.get('path'), 50)}", icon)]

    if item_type == "file_change":
        changes = item.get("changes")
        paths = [
            str(change.get("path"))
            for change in (changes if isinstance(changes, list) else [])
            if isinstance(change, dict) and change.get("path")
        ]
        return [
            state.status("tool", f"Editing: {truncate(', '.join(paths), 50)}", "📝")
        ]

    if item_type == "mcp_tool_call":
        tool = item.get("tool") or "tool"
        return [state.status("tool", f"MCP: {tool}", PLUGIN_ICON)]

    if item_type == "error":
        message = _error_text(item.get("message"))
        logger.warning("codex: item error: %s", message)
        return [state.status("warning", message, "⚠️")]

    logger.debug("codex: ignoring item type %r", item_type)
    return []


def _command_completed(item: dict[str, Any], state: ParserState) -> NormalizedEvent:
    item_id = item.get("id")
    if item_id is not None:
        state.pending_tools.pop(str(item_id), None)

    command = item.get("command") or "command"
    exit_code = item.get("exit_code")
    succeeded = exit_code == 0 or (
        exit_code is None and item.get("status") == "completed"
    )
    outcome = "completed" if succeeded else f"failed ({exit_code})"
    return state.status(
        "tool",
        f"Bash: {truncate(command, 40)} - {outcome}",
        "✅" if succeeded else "❌",
        tool_output=truncate_output(item.get("aggregated_output")),
    )


def _turn_completed(
    record: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    usage = as_dict(record.get("usage"))
    logger.info("codex: turn completed, usage=%s", usage)
    state.usage = Usage.from_counts(
        usage.get("input_tokens"),
        usage.get("output_tokens"),
        cached_tokens=usage.get("cached_input_tokens"),
    )
    return [
        ResponseDoneEvent(full_text=state.response_text),
        DoneEvent(usage=state.usage, native_session_id=state.native_session_id),
    ]


GRAMMAR = Grammar(name="codex", decode=decode, text_mode="replace")
