"""Per-turn decoder state and the grammar descriptor."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from clirelay.stream.events import NormalizedEvent, StatusEvent, Usage, as_number

TextMode = Literal["replace", "append"]


def iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass
class ParserState:
    """Mutable state of one turn, owned by a single ``StreamParser``.

    ``text_mode`` records how the grammar accumulates response text:
    ``replace`` grammars overwrite it with each complete block, ``append``
    grammars concatenate deltas.
    """

    text_mode: TextMode = "replace"
    response_text: str = ""
    usage: Usage | None = None
    pending_tools: dict[str, dict[str, Any]] = field(default_factory=dict)
    native_session_id: str | None = None
    model: str | None = None
    received_partial: bool = False
    clock: Callable[[], str] = iso_now

    def status(
        self,
        category: str,
        message: str,
        icon: str,
        *,
        timestamp: Any = None,
        **extra: Any,
    ) -> StatusEvent:
        """Build a status event stamped with the record's time or now."""
        ts = timestamp if isinstance(timestamp, str) and timestamp else self.clock()
        return StatusEvent(
            category=category,
            message=message,
            icon=icon,
            timestamp=ts,
            **extra,
        )


Decoder = Callable[[dict[str, Any], ParserState], list[NormalizedEvent]]


@dataclass(frozen=True)
class Grammar:
    """An engine grammar: its record decoder and text accumulation rules."""

    name: str
    decode: Decoder
    text_mode: TextMode = "replace"
    finalize_text: Callable[[str], str] | None = None

    def new_state(self, clock: Callable[[], str] | None = None) -> ParserState:
        state = ParserState(text_mode=self.text_mode)
        if clock is not None:
            state.clock = clock
        return state


def coerce_int(value: Any) -> int:
    """Integer view of an engine-supplied number; missing or invalid is 0."""
    return int(as_number(value))


def as_dict(value: Any) -> dict[str, Any]:
    """*value* if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}
