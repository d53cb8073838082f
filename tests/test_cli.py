"""Tests for the clirelay command line."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from clirelay.cli import cli
from clirelay.engine.turn import TurnResult
from clirelay.errors import SpawnError
from clirelay.stream import StatusEvent, Usage


def _fake_send(result: TurnResult | None = None, error: Exception | None = None):
    """Build a send_message stand-in that reports one status event."""

    async def send_message(self, turn, on_status=None):
        on_status(
            StatusEvent(
                category="tool",
                message="Bash: ls",
                icon="🔧",
                timestamp="2025-01-01T00:00:00.000Z",
            )
        )
        if error is not None:
            raise error
        return result

    return send_message


def test_help() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output
    assert "engines" in result.output


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "clirelay, version 0.1.0" in result.output


def test_run_unknown_engine() -> None:
    result = CliRunner().invoke(cli, ["run", "cursor", "hi"])
    assert result.exit_code == 2


def test_run_prints_response() -> None:
    turn_result = TurnResult(
        text="Two files.",
        usage=Usage.from_counts(10, 5),
        native_session_id="native-1",
    )
    runner = CliRunner()
    with (
        runner.isolated_filesystem(),
        patch(
            "clirelay.engine.supervisor.EngineSupervisor.send_message",
            _fake_send(turn_result),
        ),
    ):
        result = runner.invoke(
            cli, ["run", "claude", "list files", "--session", "sess-1"]
        )

    assert result.exit_code == 0
    assert result.stdout == "Two files.\n"
    assert "🔧 Bash: ls" in result.stderr
    assert "[session sess-1 native=native-1 tokens=15]" in result.stderr


def test_run_json_events() -> None:
    runner = CliRunner()
    with (
        runner.isolated_filesystem(),
        patch(
            "clirelay.engine.supervisor.EngineSupervisor.send_message",
            _fake_send(TurnResult(text="ok")),
        ),
    ):
        result = runner.invoke(cli, ["run", "codex", "hi", "--json"])

    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["type"] == "status"
    assert event["message"] == "Bash: ls"
    assert "toolOutput" not in event


def test_run_engine_error_exits_1() -> None:
    runner = CliRunner()
    with (
        runner.isolated_filesystem(),
        patch(
            "clirelay.engine.supervisor.EngineSupervisor.send_message",
            _fake_send(error=SpawnError("Engine binary not found: gemini")),
        ),
    ):
        result = runner.invoke(cli, ["run", "gemini", "hi"])

    assert result.exit_code == 1
    assert "Error: Engine binary not found: gemini" in result.stderr


def test_run_passes_turn_options(tmp_path: Path) -> None:
    image = tmp_path / "shot.png"
    image.write_bytes(b"\x89PNG")
    send = AsyncMock(return_value=TurnResult(text="done"))
    runner = CliRunner()
    with (
        runner.isolated_filesystem(),
        patch("clirelay.engine.supervisor.EngineSupervisor.send_message", send),
    ):
        result = runner.invoke(
            cli,
            [
                "run",
                "codex",
                "fix it",
                "-m",
                "gpt-5.1-codex-high",
                "-r",
                "th-1",
                "-C",
                str(tmp_path),
                "--reasoning",
                "high",
                "-i",
                str(image),
            ],
        )

    assert result.exit_code == 0, result.output
    turn = send.call_args.args[0]
    assert turn.prompt == "fix it"
    assert turn.model == "gpt-5.1-codex-high"
    assert turn.native_resume_id == "th-1"
    assert turn.workspace_path == str(tmp_path)
    assert turn.reasoning_effort == "high"
    assert turn.image_files == (str(image),)
    assert turn.session_id


def test_run_bad_config() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        Path("clirelay.yaml").write_text("engines: [\n", encoding="utf-8")
        result = runner.invoke(cli, ["run", "claude", "hi"])

    assert result.exit_code == 1
    assert "Error: Invalid YAML" in result.stderr


def test_run_disabled_engine() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        Path("clirelay.yaml").write_text(
            "engines:\n  qwen:\n    enabled: false\n", encoding="utf-8"
        )
        result = runner.invoke(cli, ["run", "qwen", "hi"])

    assert result.exit_code == 1
    assert "disabled" in result.stderr


def test_engines_lists_availability() -> None:
    runner = CliRunner()
    with (
        runner.isolated_filesystem(),
        patch(
            "clirelay.engine.supervisor.EngineSupervisor.is_available",
            AsyncMock(side_effect=[True, False, True]),
        ),
        patch("clirelay.engine.supervisor.resolve_binary", side_effect=lambda e, c: f"/opt/{e}"),
    ):
        Path("clirelay.yaml").write_text(
            "engines:\n  codex:\n    enabled: false\n", encoding="utf-8"
        )
        result = runner.invoke(cli, ["engines"])

    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert lines[0].split() == ["claude", "available", "/opt/claude"]
    assert lines[1].split() == ["gemini", "missing", "/opt/gemini"]
    assert lines[2].split() == ["codex", "disabled", "-"]
    assert lines[3].split() == ["qwen", "available", "/opt/qwen"]
