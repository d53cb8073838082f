"""Streaming output normalization: framing, grammars and normalized events."""

from clirelay.stream.decoders import GRAMMARS, get_grammar
from clirelay.stream.events import (
    DoneEvent,
    ErrorEvent,
    MessageStartEvent,
    NormalizedEvent,
    ResponseChunkEvent,
    ResponseDoneEvent,
    StatusEvent,
    Usage,
    is_terminal,
)
from clirelay.stream.framer import LineFramer
from clirelay.stream.parser import StreamParser

__all__ = [
    "GRAMMARS",
    "DoneEvent",
    "ErrorEvent",
    "LineFramer",
    "MessageStartEvent",
    "NormalizedEvent",
    "ResponseChunkEvent",
    "ResponseDoneEvent",
    "StatusEvent",
    "StreamParser",
    "Usage",
    "get_grammar",
    "is_terminal",
]
