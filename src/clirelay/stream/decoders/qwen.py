"""Decoder for the Qwen Code ``-o stream-json`` grammar.

Qwen wraps Claude-style message envelopes (``system``, ``assistant``,
``user``, ``result``) and, with ``--include-partial-messages``, also emits
``stream_event`` records carrying text deltas. Once a delta has been seen,
the text of complete ``assistant`` blocks is already covered and is not
appended again.
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
from clirelay.stream.tools import SHELL_TOOLS, format_tool_use, truncate_output

logger = logging.getLogger(__name__)


def decode(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    """Map one Qwen record to normalized events."""
    record_type = record.get("type")

    if record_type == "system":
        return _decode_system(record, state)
    if record_type == "stream_event":
        return _decode_stream_event(as_dict(record.get("event")), state)
    if record_type == "assistant":
        return _decode_assistant(record, state)
    if record_type == "user":
        return _decode_user(record, state)
    if record_type == "result":
        return _decode_result(record, state)

    logger.debug("qwen: ignoring record type %r", record_type)
    return []


def _decode_system(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    if record.get("subtype") != "init":
        return []
    session_id = record.get("session_id") or record.get("sessionId")
    if isinstance(session_id, str) and session_id:
        state.native_session_id = session_id
    model = record.get("model") or as_dict(record.get("data")).get("model")
    if isinstance(model, str) and model:
        state.model = model
    logger.info("qwen: session initialized: %s", state.native_session_id)
    return [
        state.status(
            "system",
            "Session initialized",
            "🚀",
            timestamp=record.get("timestamp"),
            session_id=state.native_session_id,
            model=state.model,
        )
    ]


def _decode_stream_event(
    event: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    event_type = event.get("type")

    if event_type == "content_block_delta":
        delta = as_dict(event.get("delta"))
        text = delta.get("text")
        if delta.get("type") != "text_delta" or not isinstance(text, str) or not text:
            return []
        state.received_partial = True
        state.response_text += text
        return [ResponseChunkEvent(text=text, is_incremental=True)]

    if event_type == "content_block_start":
        block = as_dict(event.get("content_block"))
        if block.get("type") == "tool_use":
            return _tool_use(block, state)
    return []


def _tool_use(block: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    tool_id = block.get("id")
    key = str(tool_id) if tool_id is not None else None
    if key is not None and key in state.pending_tools:
        # Already announced through a partial event.
        return []

    name = block.get("name") or block.get("tool") or as_dict(
        block.get("function")
    ).get("name")
    name = str(name) if name else None
    tool_input = block.get("input") or block.get("parameters") or block.get("args")
    rendered = format_tool_use(name, tool_input, SHELL_TOOLS, block)

    if key is not None:
        state.pending_tools[key] = {"name": name, "input": as_dict(tool_input)}
    return [state.status("tool", rendered.message, rendered.icon)]


def _block_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def _decode_assistant(
    record: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    content = as_dict(record.get("message")).get("content")
    events: list[NormalizedEvent] = []

    text = _block_text(content)
    if text:
        if not state.received_partial:
            state.response_text += text
            events.append(ResponseChunkEvent(text=text, is_incremental=False))
        elif not state.response_text:
            state.response_text = text

    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                events.extend(_tool_use(block, state))
    return events


def _decode_user(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    content = as_dict(record.get("message")).get("content")
    if not isinstance(content, list):
        return []

    events: list[NormalizedEvent] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        pending = state.pending_tools.pop(str(block.get("tool_use_id")), None)
        name = (pending or {}).get("name") or "Tool"
        success = not block.get("is_error")
        events.append(
            state.status(
                "tool",
                f"{name}: {'completed' if success else 'failed'}",
                "✅" if success else "❌",
                tool_output=truncate_output(block.get("content")),
            )
        )
    return events


def _decode_result(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    if record.get("is_error"):
        error = record.get("error")
        message = as_dict(error).get("message") or error
        if not isinstance(message, str) or not message:
            message = "Unknown error"
        logger.error("qwen: result is an error: %s", message)
        return [ErrorEvent(message=message, category="engine")]

    usage = as_dict(record.get("usage"))
    state.usage = Usage.from_counts(
        usage.get("input_tokens"),
        usage.get("output_tokens"),
        usage.get("total_tokens"),
    )
    result = record.get("result")
    if not state.response_text and isinstance(result, str):
        state.response_text = result

    return [
        ResponseDoneEvent(full_text=state.response_text),
        DoneEvent(
            usage=state.usage,
            duration_ms=coerce_int(record.get("duration_ms")),
            native_session_id=state.native_session_id,
            status="success",
        ),
    ]


GRAMMAR = Grammar(name="qwen", decode=decode, text_mode="append")
