"""Shared helpers for engine output handling."""

from __future__ import annotations

#: Characters of raw output quoted in a nonzero-exit error.
OUTPUT_TAIL_CHARS = 200


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


class TailBuffer:
    """Keeps only the last *capacity* characters appended to it."""

    def __init__(self, capacity: int = 4096) -> None:
        self._capacity = capacity
        self._text = ""

    def append(self, text: str) -> None:
        self._text = (self._text + text)[-self._capacity :]

    @property
    def text(self) -> str:
        return self._text

    def tail(self, limit: int = OUTPUT_TAIL_CHARS) -> str:
        return self._text.strip()[-limit:]
