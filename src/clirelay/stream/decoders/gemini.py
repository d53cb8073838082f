"""Decoder for the Gemini CLI ``-o stream-json`` grammar.

Records are flat: ``init``, ``message`` (with a ``delta`` flag),
``tool_use``, ``tool_result``, ``result`` and ``error``.
"""

from __future__ import annotations

import logging
import re
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

_FAILED_STATUSES = frozenset({"error", "failure"})

# Preview models sometimes leak chain-of-thought as standalone lines.
_THINKING_LINES = [
    re.compile(r"^Wait,?\s+.{0,200}$", re.MULTILINE),
    re.compile(r"^Actually,?\s+.{0,200}$", re.MULTILINE),
    re.compile(r"^Let me\s+.{0,150}$", re.MULTILINE),
    re.compile(r"^I will\s+.{0,150}$", re.MULTILINE),
    re.compile(r"^I should\s+.{0,150}$", re.MULTILINE),
    re.compile(r"^I need to\s+.{0,150}$", re.MULTILINE),
    re.compile(r"^Ready\.?[ \t]*$", re.MULTILINE),
    re.compile(r"^Okay\.?[ \t]*$", re.MULTILINE),
]
_BLANK_RUN = re.compile(r"\n{3,}")


def filter_thinking(text: str) -> str:
    """Drop leaked reasoning lines from a final response."""
    if not text:
        return text
    for pattern in _THINKING_LINES:
        text = pattern.sub("", text)
    return _BLANK_RUN.sub("\n\n", text).strip()


def decode(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    """Map one Gemini record to normalized events."""
    record_type = record.get("type")

    if record_type == "init":
        return _decode_init(record, state)
    if record_type == "message":
        return _decode_message(record, state)
    if record_type == "tool_use":
        return _decode_tool_use(record, state)
    if record_type == "tool_result":
        return _decode_tool_result(record, state)
    if record_type == "result":
        return _decode_result(record, state)
    if record_type == "error":
        return _decode_error(record, state)

    logger.debug("gemini: ignoring record type %r", record_type)
    return []


def _decode_init(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    session_id = record.get("session_id")
    if isinstance(session_id, str) and session_id:
        state.native_session_id = session_id
    model = record.get("model")
    if isinstance(model, str) and model:
        state.model = model
    logger.info(
        "gemini: session initialized: %s (model %s)",
        state.native_session_id,
        state.model,
    )
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


def _decode_message(
    record: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    if record.get("role") not in ("assistant", "model"):
        return []
    content = record.get("content")
    if not isinstance(content, str) or not content:
        return []

    delta = bool(record.get("delta"))
    if delta:
        state.response_text += content
    else:
        state.response_text = content
    return [ResponseChunkEvent(text=content, is_incremental=delta)]


def _tool_name(record: dict[str, Any]) -> str | None:
    name = (
        record.get("tool_name")
        or record.get("tool")
        or record.get("name")
        or as_dict(record.get("function")).get("name")
    )
    return str(name) if name else None


def _tool_key(record: dict[str, Any]) -> str | None:
    key = record.get("tool_id") or record.get("tool_use_id")
    return str(key) if key else None


def _decode_tool_use(
    record: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    name = _tool_name(record)
    tool_input = record.get("parameters") or record.get("input") or record.get("args")
    if name is None:
        logger.debug("gemini: tool_use without a name: %.200r", record)
    rendered = format_tool_use(name, tool_input, SHELL_TOOLS, record)

    key = _tool_key(record) or name
    if key:
        state.pending_tools[key] = {"name": name, "input": as_dict(tool_input)}

    return [
        state.status(
            "tool",
            rendered.message,
            rendered.icon,
            timestamp=record.get("timestamp"),
        )
    ]


def _decode_tool_result(
    record: dict[str, Any], state: ParserState
) -> list[NormalizedEvent]:
    key = _tool_key(record) or _tool_name(record)
    pending = state.pending_tools.pop(key, None) if key else None
    name = (pending or {}).get("name") or _tool_name(record) or "Tool"

    success = record.get("status") not in _FAILED_STATUSES
    output = record.get("output") or record.get("result")
    if not success and not output:
        output = as_dict(record.get("error")).get("message")
    return [
        state.status(
            "tool",
            f"{name}: {'completed' if success else 'failed'}",
            "✅" if success else "❌",
            timestamp=record.get("timestamp"),
            tool_output=truncate_output(output),
        )
    ]


def _error_text(value: Any, default: str) -> str:
    if isinstance(value, str) and value:
        return value
    message = as_dict(value).get("message")
    if isinstance(message, str) and message:
        return message
    return default


def _decode_result(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    status = record.get("status")
    stats = as_dict(record.get("stats"))
    logger.info("gemini: result status=%s stats=%s", status, stats)

    if status in _FAILED_STATUSES:
        message = _error_text(record.get("error"), f"Gemini turn ended with {status}")
        return [ErrorEvent(message=message, category="engine")]

    state.usage = Usage.from_counts(
        stats.get("input_tokens"),
        stats.get("output_tokens"),
        stats.get("total_tokens"),
    )
    return [
        ResponseDoneEvent(full_text=state.response_text),
        DoneEvent(
            usage=state.usage,
            duration_ms=coerce_int(stats.get("duration_ms")),
            native_session_id=state.native_session_id,
            status=status if isinstance(status, str) else None,
            tool_calls=coerce_int(stats.get("tool_calls")),
        ),
    ]


def _decode_error(record: dict[str, Any], state: ParserState) -> list[NormalizedEvent]:
    message = record.get("message")
    if not isinstance(message, str) or not message:
        message = _error_text(record.get("error"), "Unknown error")

    if record.get("severity") == "warning":
        logger.warning("gemini: %s", message)
        return [
            state.status(
                "warning", message, "⚠️", timestamp=record.get("timestamp")
            )
        ]
    logger.error("gemini: error record: %s", message)
    return [ErrorEvent(message=message, category="engine")]


GRAMMAR = Grammar(
    name="gemini",
    decode=decode,
    text_mode="append",
    finalize_text=filter_thinking,
)
