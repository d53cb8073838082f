"""clirelay run — send one prompt to an engine and stream its events."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from pathlib import Path

import click

from clirelay.config.models import RelayConfig
from clirelay.config.parser import ConfigError, load_config
from clirelay.constants import ENGINE_NAMES
from clirelay.engine import EngineSupervisor, InterruptRegistry, TurnRequest
from clirelay.errors import EngineError
from clirelay.stream import NormalizedEvent, StatusEvent


@click.command()
@click.argument("engine", type=click.Choice(ENGINE_NAMES))
@click.argument("prompt")
@click.option("-m", "--model", default=None, help="Model id (engine default if omitted).")
@click.option(
    "-s",
    "--session",
    "session_id",
    default=None,
    help="Logical session id (a new one is generated if omitted).",
)
@click.option(
    "-r",
    "--resume",
    "resume_id",
    default=None,
    help="Native session id from a previous turn to resume.",
)
@click.option(
    "-C",
    "--cwd",
    "workspace",
    type=click.Path(file_okay=False, exists=True),
    default=None,
    help="Working directory of the engine process.",
)
@click.option("--reasoning", default=None, help="Reasoning effort (codex only).")
@click.option(
    "-i",
    "--image",
    "images",
    multiple=True,
    type=click.Path(dir_okay=False, exists=True),
    help="Image to attach (codex only). Repeatable.",
)
@click.option(
    "-f", "--config", "config_file", type=click.Path(), help="Config file path."
)
@click.option("--json", "as_json", is_flag=True, help="Print events as JSON lines.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def run(
    engine: str,
    prompt: str,
    model: str | None,
    session_id: str | None,
    resume_id: str | None,
    workspace: str | None,
    reasoning: str | None,
    images: tuple[str, ...],
    config_file: str | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Run one turn of ENGINE with PROMPT."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    if not config.engine(engine).enabled:
        click.echo(f"Error: engine '{engine}' is disabled in the config", err=True)
        raise SystemExit(1)

    turn = TurnRequest(
        prompt=prompt,
        session_id=session_id or str(uuid.uuid4()),
        native_resume_id=resume_id,
        model=model,
        workspace_path=workspace,
        reasoning_effort=reasoning,
        image_files=images,
    )
    code = asyncio.run(_run_turn(engine, turn, config, as_json))
    if code:
        raise SystemExit(code)


async def _run_turn(
    engine: str, turn: TurnRequest, config: RelayConfig, as_json: bool
) -> int:
    supervisor = EngineSupervisor(engine, config=config, registry=InterruptRegistry())
    on_status = _print_json if as_json else _print_human
    try:
        result = await supervisor.send_message(turn, on_status)
    except EngineError as exc:
        click.echo(f"Error: {exc}", err=True)
        return 1

    if not as_json:
        click.echo(result.text)
        click.echo(
            f"[session {turn.session_id}"
            f" native={result.native_session_id or '-'}"
            f" tokens={result.usage.total_tokens}]",
            err=True,
        )
    return 0


def _print_json(event: NormalizedEvent) -> None:
    click.echo(json.dumps(event.model_dump(by_alias=True, exclude_none=True)))


def _print_human(event: NormalizedEvent) -> None:
    if isinstance(event, StatusEvent):
        click.echo(f"{event.icon} {event.message}", err=True)
