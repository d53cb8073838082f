"""Pydantic v2 models for the normalized event stream of a turn."""

from __future__ import annotations

import math
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _EventBase(BaseModel):
    """Common configuration shared by every normalized event."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


def as_number(value: Any) -> float:
    """Coerce an engine-supplied count to a finite number, defaulting to 0."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return value


class Usage(BaseModel):
    """Token accounting for one turn.

    Missing counts are always 0, never ``None``; ``total_tokens`` is the sum
    of prompt and completion tokens unless the engine reports its own total.
    """

    model_config = ConfigDict(extra="forbid")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_read_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cached_tokens: int | None = None
    cost_usd: float | None = None

    @classmethod
    def from_counts(
        cls,
        prompt: Any = 0,
        completion: Any = 0,
        total: Any = None,
        **extras: Any,
    ) -> Usage:
        """Build a usage record from raw, possibly missing engine values.

        *extras* are optional cache/cost fields; they are coerced the same
        way but only set when passed.
        """
        prompt_tokens = int(as_number(prompt))
        completion_tokens = int(as_number(completion))
        authoritative = int(as_number(total))
        fields: dict[str, Any] = {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": authoritative or prompt_tokens + completion_tokens,
        }
        for key, value in extras.items():
            number = as_number(value)
            fields[key] = float(number) if key == "cost_usd" else int(number)
        return cls(**fields)


class MessageStartEvent(_EventBase):
    """Emitted once when the engine process has been started for a turn."""

    type: Literal["message_start"] = "message_start"


class StatusEvent(_EventBase):
    """Progress report: session init, tool activity, reasoning, warnings."""

    type: Literal["status"] = "status"
    category: str = Field(description="system, tool, reasoning, warning, ...")
    message: str = Field(description="Human-readable status line")
    icon: str = Field(default="⚙️", description="Emoji shown next to the message")
    timestamp: str = Field(description="ISO 8601 timestamp")
    tool_output: str | None = Field(
        default=None,
        alias="toolOutput",
        description="Truncated tool output, for tool completion statuses",
    )
    payload: Any = Field(
        default=None,
        description="Structured data attached to the status (e.g. a todo list)",
    )
    session_id: str | None = Field(default=None, alias="sessionId")
    model: str | None = Field(default=None)


class ResponseChunkEvent(_EventBase):
    """A piece of response text, either a delta or a complete block."""

    type: Literal["response_chunk"] = "response_chunk"
    text: str
    is_incremental: bool = Field(alias="isIncremental")


class ResponseDoneEvent(_EventBase):
    """The complete response text of the turn."""

    type: Literal["response_done"] = "response_done"
    full_text: str = Field(alias="fullText")


class DoneEvent(_EventBase):
    """Terminal success event carrying usage and the native session id."""

    type: Literal["done"] = "done"
    usage: Usage = Field(default_factory=Usage)
    duration_ms: int = Field(default=0, alias="durationMs")
    native_session_id: str | None = Field(default=None, alias="nativeSessionId")
    status: str | None = Field(default=None)
    tool_calls: int | None = Field(default=None, alias="toolCalls")


class ErrorEvent(_EventBase):
    """Terminal failure event."""

    type: Literal["error"] = "error"
    message: str
    category: str | None = Field(
        default=None,
        description="runtime, config, timeout, engine, ...",
    )


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


NormalizedEvent = Annotated[
    Annotated[MessageStartEvent, Tag("message_start")]
    | Annotated[StatusEvent, Tag("status")]
    | Annotated[ResponseChunkEvent, Tag("response_chunk")]
    | Annotated[ResponseDoneEvent, Tag("response_done")]
    | Annotated[DoneEvent, Tag("done")]
    | Annotated[ErrorEvent, Tag("error")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all normalized event types."""


def is_terminal(event: Any) -> bool:
    """Whether *event* ends the turn (``done`` or ``error``)."""
    return isinstance(event, DoneEvent | ErrorEvent)
