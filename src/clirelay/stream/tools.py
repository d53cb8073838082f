"""Table-driven formatting of tool invocations into status lines."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

#: Icon for tools that have no table entry.
GENERIC_ICON = "⚙️"

#: Icon for plugin (MCP) tools that have no dedicated icon.
PLUGIN_ICON = "🔌"

#: Prefix of qualified plugin tool names: ``mcp__<server>__<tool>``.
PLUGIN_PREFIX = "mcp__"

#: Maximum characters of tool output attached to a status event.
TOOL_OUTPUT_LIMIT = 500


@dataclass(frozen=True)
class ToolFormat:
    """How to render one tool name.

    ``keys`` are looked up in the tool input (then in the raw record) and
    the first non-empty value is truncated to ``limit`` characters and
    appended to ``label``. With no keys, ``label`` is the whole message.
    """

    label: str
    icon: str
    keys: tuple[str, ...] = ()
    limit: int = 50
    default: str = ""


@dataclass(frozen=True)
class ToolStatus:
    """Rendered status line for a tool invocation."""

    message: str
    icon: str
    payload: Any = None


#: Tool vocabulary of the block grammar (Claude Code).
BLOCK_TOOLS: dict[str, ToolFormat] = {
    "Bash": ToolFormat("Bash", "🔧", ("command",), 60),
    "BashOutput": ToolFormat("Reading output", "📤", ("bash_id", "shell_id"), 20),
    "KillShell": ToolFormat("Killing shell", "🛑", ("shell_id",), 20),
    "Read": ToolFormat("Reading", "📖", ("file_path",), 50),
    "Write": ToolFormat("Writing", "✍️", ("file_path",), 50),
    "Edit": ToolFormat("Editing", "📝", ("file_path",), 50),
    "Grep": ToolFormat("Searching", "🔍", ("pattern",), 40),
    "Glob": ToolFormat("Finding", "🗂️", ("pattern",), 40),
    "Task": ToolFormat("Task", "📋", ("description",), 50),
    "WebFetch": ToolFormat("Fetching", "🌐", ("url",), 50),
    "WebSearch": ToolFormat("Searching web", "🔎", ("query",), 40),
    "NotebookEdit": ToolFormat("Editing notebook", "📓", ("notebook_path",), 40),
    "EnterPlanMode": ToolFormat("Entering plan mode...", "📐"),
    "ExitPlanMode": ToolFormat("Exiting plan mode...", "🚪"),
    "Skill": ToolFormat("Using skill", "🎯", ("skill",), 30),
    "SlashCommand": ToolFormat("Running", "⌨️", ("command",), 40),
    "AskUserQuestion": ToolFormat("Asking", "❓", ("question",), 40),
    "TodoWrite": ToolFormat("Updating todos", "✅"),
}

_SHELL = ToolFormat("Shell", "🔧", ("command",), 60)
_READ = ToolFormat("Reading", "📖", ("path", "file_path"), 50)
_WRITE = ToolFormat("Writing", "✍️", ("path", "file_path"), 50)
_EDIT = ToolFormat("Editing", "📝", ("path", "file_path"), 50)
_SEARCH = ToolFormat("Searching", "🔍", ("pattern", "query"), 40)
_LIST = ToolFormat("Listing", "🗂️", ("path", "dir_path"), 50, default=".")
_WEB_SEARCH = ToolFormat("Web search", "🔎", ("query",), 40)
_WEB_FETCH = ToolFormat("Fetching", "🌐", ("url",), 50)

#: Tool vocabulary of the shell-style grammars (Gemini CLI, Qwen Code).
SHELL_TOOLS: dict[str, ToolFormat] = {
    "shell": _SHELL,
    "run_shell_command": _SHELL,
    "execute_command": _SHELL,
    "read_file": _READ,
    "read_many_files": ToolFormat("Reading", "📚", ("path", "file_path"), 50),
    "read": _READ,
    "write_file": _WRITE,
    "write": _WRITE,
    "edit_file": _EDIT,
    "edit": _EDIT,
    "search_files": _SEARCH,
    "grep": _SEARCH,
    "find_files": _SEARCH,
    "list_directory": _LIST,
    "list_dir": _LIST,
    "ls": _LIST,
    "web_search": _WEB_SEARCH,
    "google_search": _WEB_SEARCH,
    "search": _WEB_SEARCH,
    "web_fetch": _WEB_FETCH,
    "fetch_url": _WEB_FETCH,
}

#: Plugin tools with a dedicated icon.
PLUGIN_ICONS: dict[str, str] = {
    "mcp__dag-memory__memory_read": "🧠",
    "mcp__dag-memory__memory_write": "💾",
    "mcp__dag-memory__memory_search": "🔍",
    "mcp__dag-memory__memory_stats": "📊",
}

_DANGEROUS_PATTERNS = [
    re.compile(r"pkill\s+(-\d+\s+)?node", re.IGNORECASE),
    re.compile(r"killall\s+(-\d+\s+)?node", re.IGNORECASE),
    re.compile(r"kill\s+-9", re.IGNORECASE),
    re.compile(r"rm\s+-rf\s+[/~]", re.IGNORECASE),
    re.compile(r"shutdown", re.IGNORECASE),
    re.compile(r"reboot", re.IGNORECASE),
    re.compile(r"systemctl\s+(stop|restart|disable)", re.IGNORECASE),
    re.compile(r"service\s+\w+\s+(stop|restart)", re.IGNORECASE),
    re.compile(r">\s*/dev/sd", re.IGNORECASE),
    re.compile(r"mkfs", re.IGNORECASE),
    re.compile(r"dd\s+if=.*of=/dev", re.IGNORECASE),
]


def truncate(text: Any, max_len: int) -> str:
    """Cut *text* to *max_len* characters, marking the cut with ``...``."""
    if not text:
        return ""
    text = str(text)
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def truncate_output(content: Any, max_len: int = TOOL_OUTPUT_LIMIT) -> str | None:
    """Render tool output for a status event, JSON-encoding non-strings."""
    if not content:
        return None
    text = content if isinstance(content, str) else json.dumps(content, default=str)
    if len(text) > max_len:
        return text[:max_len] + "\n... (truncated)"
    return text


def is_plugin_tool(name: str | None) -> bool:
    return bool(name and name.startswith(PLUGIN_PREFIX))


def plugin_short_name(name: str) -> str:
    """``mcp__server__tool`` -> ``tool``."""
    return name.split("__")[-1] or "mcp"


def tool_icon(name: str | None, table: dict[str, ToolFormat]) -> str:
    """Icon for *name*, falling back to the plugin or generic icon."""
    if name and name in table:
        return table[name].icon
    if name and name.startswith(PLUGIN_PREFIX):
        return PLUGIN_ICONS.get(name, PLUGIN_ICON)
    return GENERIC_ICON


def todo_summary(todos: list[dict[str, Any]]) -> str:
    """``N: done✓ active⚡ pending○`` for a TodoWrite list."""
    statuses = [t.get("status") for t in todos if isinstance(t, dict)]
    completed = statuses.count("completed")
    in_progress = statuses.count("in_progress")
    pending = statuses.count("pending")
    return f"{len(todos)}: {completed}✓ {in_progress}⚡ {pending}○"


def _lookup(keys: tuple[str, ...], *sources: dict[str, Any]) -> str:
    for key in keys:
        for source in sources:
            value = source.get(key)
            if value:
                return str(value)
    return ""


def format_tool_use(
    name: str | None,
    tool_input: Any,
    table: dict[str, ToolFormat],
    record: dict[str, Any] | None = None,
) -> ToolStatus:
    """Render a tool invocation as a status line.

    Args:
        name: Tool name as reported by the engine.
        tool_input: Tool arguments (non-dicts are treated as empty).
        table: Tool vocabulary of the engine's grammar.
        record: The raw record, searched after *tool_input* for argument
            values some engines put at the top level.
    """
    args = tool_input if isinstance(tool_input, dict) else {}
    raw = record or {}

    if name == "TodoWrite" and name in table:
        todos = args.get("todos")
        todos = todos if isinstance(todos, list) else []
        return ToolStatus(
            f"Updating todos ({todo_summary(todos)})",
            table[name].icon,
            payload=todos,
        )

    fmt = table.get(name or "")
    if fmt is not None:
        if not fmt.keys:
            return ToolStatus(fmt.label, fmt.icon)
        value = _lookup(fmt.keys, args, raw) or fmt.default
        return ToolStatus(f"{fmt.label}: {truncate(value, fmt.limit)}", fmt.icon)

    if name and name.startswith(PLUGIN_PREFIX):
        return ToolStatus(f"MCP: {plugin_short_name(name)}", tool_icon(name, table))
    if name:
        return ToolStatus(f"{name}: running...", GENERIC_ICON)
    return ToolStatus("Tool: running...", GENERIC_ICON)


def is_dangerous_command(command: str | None) -> bool:
    """Whether a shell command matches a destructive pattern."""
    if not command:
        return False
    return any(pattern.search(command) for pattern in _DANGEROUS_PATTERNS)
