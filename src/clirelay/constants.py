"""Shared constants and type aliases for the clirelay runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from clirelay.stream.events import NormalizedEvent

#: Engine families with a grammar decoder and an argument builder.
ENGINE_NAMES = ("claude", "gemini", "codex", "qwen")

EngineName = Literal["claude", "gemini", "codex", "qwen"]

#: Callback invoked once per normalized event, in stream order.
StatusCallback = Callable[["NormalizedEvent"], None]

#: Default turn timeout in seconds (10 minutes).
DEFAULT_TIMEOUT_S = 600.0
