"""Per-engine grammar decoders."""

from __future__ import annotations

from clirelay.stream.decoders import claude, codex, gemini, qwen
from clirelay.stream.state import Grammar

GRAMMARS: dict[str, Grammar] = {
    "claude": claude.GRAMMAR,
    "gemini": gemini.GRAMMAR,
    "codex": codex.GRAMMAR,
    "qwen": qwen.GRAMMAR,
}


def get_grammar(name: str) -> Grammar:
    """Return the grammar for engine *name*."""
    try:
        return GRAMMARS[name]
    except KeyError:
        known = ", ".join(sorted(GRAMMARS))
        raise KeyError(f"Unknown engine grammar {name!r} (known: {known})") from None


__all__ = ["GRAMMARS", "get_grammar"]
