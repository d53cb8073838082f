"""Stream parser: line framing, JSON decoding and grammar dispatch for one turn."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable

from clirelay.stream.events import ErrorEvent, NormalizedEvent, Usage, is_terminal
from clirelay.stream.framer import LineFramer
from clirelay.stream.state import Grammar

logger = logging.getLogger(__name__)

#: Terminal control sequences a pseudo-terminal adds to the engine's output.
_CONTROL_SEQUENCES = re.compile(r"\x1b\[\??[0-9;]*[a-zA-Z]|\r")

#: Characters of an undecodable line kept in the log message.
_LOG_PREVIEW = 100


def strip_control(line: str) -> str:
    """Remove ANSI CSI sequences, private-mode toggles and carriage returns."""
    return _CONTROL_SEQUENCES.sub("", line)


class StreamParser:
    """Decodes the stdout of one engine process into normalized events.

    Feed raw chunks with :meth:`consume` as they arrive and call
    :meth:`close` at end of stream. The event sequence does not depend on
    where chunk boundaries fall. At most one terminal event (``done`` or
    ``error``) is produced; anything decoded after it is dropped.

    Args:
        grammar: The engine grammar used to decode each record.
        strip_control: Remove terminal control sequences from each line
            before decoding (for pseudo-terminal transports).
        clock: Timestamp source for status events.
    """

    def __init__(
        self,
        grammar: Grammar,
        *,
        strip_control: bool = False,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self.grammar = grammar
        self.state = grammar.new_state(clock)
        self._framer = LineFramer()
        self._strip_control = strip_control
        self._terminal: NormalizedEvent | None = None

    # ------------------------------------------------------------------ #
    # Feeding
    # ------------------------------------------------------------------ #

    def consume(self, chunk: str | bytes) -> list[NormalizedEvent]:
        """Decode every line completed by *chunk*."""
        return self._decode_lines(self._framer.feed(chunk))

    def close(self) -> list[NormalizedEvent]:
        """Decode the trailing unterminated line, if any."""
        return self._decode_lines(self._framer.flush())

    def _decode_lines(self, lines: list[str]) -> list[NormalizedEvent]:
        events: list[NormalizedEvent] = []
        for line in lines:
            if self._terminal is not None:
                logger.debug(
                    "%s: ignoring line after terminal %s",
                    self.grammar.name,
                    self._terminal.type,
                )
                continue
            for event in self._decode_line(line):
                if self._terminal is not None:
                    logger.debug(
                        "%s: dropping %s event after terminal %s",
                        self.grammar.name,
                        event.type,
                        self._terminal.type,
                    )
                    continue
                if is_terminal(event):
                    self._terminal = event
                events.append(event)
        return events

    def _decode_line(self, line: str) -> list[NormalizedEvent]:
        if self._strip_control:
            line = strip_control(line)
        line = line.strip()
        if not line:
            return []
        if not line.startswith("{"):
            logger.debug(
                "%s: non-JSON line ignored: %.*s",
                self.grammar.name,
                _LOG_PREVIEW,
                line,
            )
            return []

        try:
            record = json.loads(line)
        except (ValueError, RecursionError) as exc:
            logger.warning(
                "%s: skipping malformed line (%s): %.*s",
                self.grammar.name,
                exc,
                _LOG_PREVIEW,
                line,
            )
            return []
        if not isinstance(record, dict):
            return []

        logger.debug("%s: record type=%s", self.grammar.name, record.get("type"))
        return self.grammar.decode(record, self.state)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    def final_response(self) -> str:
        """Accumulated response text of the turn."""
        text = self.state.response_text
        if self.grammar.finalize_text is not None:
            text = self.grammar.finalize_text(text)
        return text.strip()

    def usage(self) -> Usage:
        """Token usage reported by the engine; all zeros if none was."""
        return self.state.usage if self.state.usage is not None else Usage()

    def native_session_id(self) -> str | None:
        return self.state.native_session_id

    def terminal_event(self) -> NormalizedEvent | None:
        return self._terminal

    def error_message(self) -> str | None:
        """Message of the terminal ``error`` event, if the turn ended in one."""
        if isinstance(self._terminal, ErrorEvent):
            return self._terminal.message
        return None
