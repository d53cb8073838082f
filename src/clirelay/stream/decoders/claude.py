"""Decoder for the Claude Code ``--output-format stream-json`` grammar.

Claude CLI ``--print --verbose --output-format stream-json`` emits these
top-level record types:

* ``system``    — ``subtype: init`` carries the native ``session_id``.
* ``assistant`` — wraps an API message; ``message.content`` is a string or a
  list of ``text``, ``tool_use`` and ``thinking`` blocks.
* ``user``      — ``tool_result`` blocks, correlated to an earlier
  ``tool_use`` block by ``tool_use_id``.
* ``result``    — terminal record with usage, cost, duration and the
  concluding text.

Response text is full-replace: each text block replaces the previous one.
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
from clirelay.stream.state import Grammar, ParserState, as_dict, coerce_int
from clirelay.stream.tools import (
    BLOCK_TOOLS,
    format_tool_use,
    todo_summary,
    tool_icon,
    truncate,
    truncate_output,
)

logger = logging.getLogger(__name__)

#: Fallback label for a tool result whose invocation was never seen.
UNKNOWN_TOOL = "Tool"


def decode(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    """Map one Claude record to normalized events."""
    record_type = record.get("type")

    if record_type == "system":
        return _decode_system(record, state)
    if record_type == "assistant":
        return _decode_assistant(record, state)
    if record_type == "user":
        return _decode_user(record, state)
    if record_type == "result":
        return _decode_result(record, state)

    logger.debug("claude: ignoring record type %r", record_type)
    return []


def _decode_system(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    if record.get("subtype") != "init":
        return []
    session_id = record.get("session_id")
    if isinstance(session_id, str) and session_id:
        state.native_session_id = session_id
    model = record.get("model")
    if isinstance(model, str) and model:
        state.model = model
    logger.info("claude: session initialized: %s", state.native_session_id)
    return [
        state.status(
            "system",
            "Session initialized",
            "🚀",
            session_id=state.native_session_id,
            model=state.model,
        )
    ]


def _decode_assistant(
    record: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    content = as_dict(record.get("message")).get("content")

    # Some CLI versions send the message content as a bare string.
    if isinstance(content, str):
        return _replace_text(content, state)

    events: list[NormalizedEvent] = []
    if not isinstance(content, list):
        return events

    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "tool_use":
            events.append(_tool_use(block, state))
        elif block_type == "text":
            events.extend(_replace_text(block.get("text"), state))
        elif block_type == "thinking":
            thinking = block.get("thinking")
            if isinstance(thinking, str) and thinking.strip():
                events.append(
                    state.status(
                        "reasoning", f"Thinking: {truncate(thinking, 50)}", "🧠"
                    )
                )
    return events


def _replace_text(text: Any, state: ParserState) -> list[NormalizedEvent]:
    if not isinstance(text, str) or not text.strip():
        return []
    state.response_text = text
    return [ResponseChunkEvent(text=text, is_incremental=False)]


def _tool_use(block: dict[str, Any], state: ParserState) -> NormalizedEvent:
    name = block.get("name") or block.get("tool")
    name = str(name) if name else None
    tool_input = block.get("input")
    rendered = format_tool_use(name, tool_input, BLOCK_TOOLS, block)

    tool_id = block.get("id")
    if tool_id is not None:
        state.pending_tools[str(tool_id)] = {
            "name": name,
            "input": as_dict(tool_input) or block,
        }

    return state.status(
        "tool", rendered.message, rendered.icon, payload=rendered.payload
    )


def _decode_user(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    content = as_dict(record.get("message")).get("content")
    if not isinstance(content, list):
        return []

    events: list[NormalizedEvent] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "tool_result":
            events.append(_tool_result(block, state))
    return events


def _result_content(content: Any) -> Any:
    """Flatten a list of text blocks to a string; other shapes pass through."""
    if isinstance(content, list):
        texts = [
            b.get("text", "")
            for b in content
            if isinstance(b, dict) and b.get("type") == "text"
        ]
        if texts:
            return "\n".join(t for t in texts if isinstance(t, str))
    return content


def _is_error_result(block: dict[str, Any], content: Any) -> bool:
    if block.get("is_error") is True:
        return True
    if isinstance(content, str):
        return (
            "Error:" in content or "error:" in content or content.startswith("Failed")
        )
    return False


def _tool_result(block: dict[str, Any], state: ParserState) -> NormalizedEvent:
    tool_use_id = block.get("tool_use_id")
    pending = state.pending_tools.pop(str(tool_use_id), None)
    if pending is None:
        logger.debug("claude: tool result for unknown invocation %r", tool_use_id)
    name = (pending or {}).get("name") or UNKNOWN_TOOL
    content = _result_content(block.get("content"))

    todos = as_dict((pending or {}).get("input")).get("todos")
    if name == "TodoWrite" and isinstance(todos, list):
        return state.status(
            "tool",
            f"Todos updated ({todo_summary(todos)})",
            tool_icon(name, BLOCK_TOOLS),
            payload=todos,
        )

    if _is_error_result(block, content):
        return state.status(
            "tool",
            f"{name}: error",
            "❌",
            tool_output=truncate_output(content),
        )
    return state.status(
        "tool",
        f"{name}: completed",
        tool_icon(name, BLOCK_TOOLS),
        tool_output=truncate_output(content),
    )


def _decode_result(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    session_id = record.get("session_id")
    if isinstance(session_id, str) and session_id and not state.native_session_id:
        state.native_session_id = session_id

    result = record.get("result")
    if record.get("is_error"):
        message = result if isinstance(result, str) and result else None
        message = message or str(record.get("subtype") or "Claude reported an error")
        logger.error("claude: result is an error: %s", message)
        return [ErrorEvent(message=message, category="engine")]

    usage = as_dict(record.get("usage"))
    state.usage = Usage.from_counts(
        usage.get("input_tokens"),
        usage.get("output_tokens"),
        cache_creation_tokens=usage.get("cache_creation_input_tokens"),
        cache_read_tokens=usage.get("cache_read_input_tokens"),
        cost_usd=record.get("total_cost_usd"),
    )
    if isinstance(result, str) and result and not state.response_text:
        state.response_text = result

    return [
        ResponseDoneEvent(full_text=state.response_text),
        DoneEvent(
            usage=state.usage,
            duration_ms=coerce_int(record.get("duration_ms")),
            native_session_id=state.native_session_id,
        ),
    ]


GRAMMAR = Grammar(name="claude", decode=decode, text_mode="replace")
