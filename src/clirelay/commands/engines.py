"""clirelay engines — report which engine binaries are available."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from clirelay.config.models import RelayConfig
from clirelay.config.parser import ConfigError, load_config
from clirelay.constants import ENGINE_NAMES
from clirelay.engine import EngineSupervisor, InterruptRegistry


@click.command()
@click.option(
    "-f", "--config", "config_file", type=click.Path(), help="Config file path."
)
def engines(config_file: str | None) -> None:
    """Probe every configured engine with --version."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    results = asyncio.run(_probe_all(config))
    for name, binary, state in results:
        click.echo(f"{name:<8} {state:<12} {binary}")


async def _probe_all(config: RelayConfig) -> list[tuple[str, str, str]]:
    registry = InterruptRegistry()
    supervisors = [
        EngineSupervisor(name, config=config, registry=registry)
        for name in ENGINE_NAMES
        if config.engine(name).enabled
    ]
    available = await asyncio.gather(*(s.is_available() for s in supervisors))

    enabled = {s.engine: (s.binary, ok) for s, ok in zip(supervisors, available)}
    results = []
    for name in ENGINE_NAMES:
        if name not in enabled:
            results.append((name, "-", "disabled"))
            continue
        binary, ok = enabled[name]
        results.append((name, binary, "available" if ok else "missing"))
    return results
