"""Root CLI group and version flag."""

import signal

import click

from clirelay import __version__
from clirelay.commands.engines import engines
from clirelay.commands.run import run

# Ensure SIGPIPE doesn't kill the process when stdout is closed early
# (e.g. piping --json output into head).
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)


@click.group()
@click.version_option(version=__version__, prog_name="clirelay")
def cli() -> None:
    """clirelay: run prompts through AI coding CLIs with one event stream."""


cli.add_command(run)
cli.add_command(engines)
