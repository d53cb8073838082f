"""Engine process handles for plain-pipe and pseudo-terminal transports."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import pty
import signal
import time
from collections.abc import Mapping
from typing import Literal

from clirelay.errors import SpawnError

logger = logging.getLogger(__name__)

TransportKind = Literal["pty", "plain"]

#: Byte written through the pseudo-terminal to ask the engine to stop.
SOFT_INTERRUPT_BYTE = b"\x1b"

#: StreamReader buffer limit for engine stdout (1 MB).
_MAX_LINE_BYTES = 1_048_576


class ProcessHandle:
    """One running engine process, exclusively owned by its turn.

    A ``pty`` handle also owns the master side of the pseudo-terminal
    given to the child as its stdin; it is the channel for the soft
    interrupt.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        transport: TransportKind,
        *,
        master_fd: int | None = None,
    ) -> None:
        self.process = process
        self.transport = transport
        self._master_fd = master_fd
        self.started_at = time.time()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None

    def soft_interrupt(self) -> bool:
        """Write the ESC byte through the pseudo-terminal.

        Returns False when the transport has no terminal channel or the
        write failed.
        """
        if self.transport != "pty" or self._master_fd is None:
            return False
        try:
            os.write(self._master_fd, SOFT_INTERRUPT_BYTE)
        except OSError as exc:
            logger.debug("pid %d: soft interrupt failed: %s", self.pid, exc)
            return False
        return True

    def send_signal(self, sig: int = signal.SIGINT) -> bool:
        """Deliver *sig*; False if the process is already gone."""
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            return False
        return True

    def kill(self) -> None:
        with contextlib.suppress(ProcessLookupError):
            self.process.kill()

    def close(self) -> None:
        """Release the pseudo-terminal, if any. Safe to call twice."""
        fd, self._master_fd = self._master_fd, None
        if fd is not None:
            with contextlib.suppress(OSError):
                os.close(fd)


async def spawn_process(
    argv: list[str],
    *,
    cwd: str | None,
    env: Mapping[str, str],
    transport: TransportKind,
) -> ProcessHandle:
    """Start an engine process with piped stdout and stderr.

    Raises:
        SpawnError: The binary does not exist or cannot be executed.
    """
    master_fd: int | None = None
    stdin: int = asyncio.subprocess.DEVNULL
    slave_fd: int | None = None
    if transport == "pty":
        master_fd, slave_fd = pty.openpty()
        stdin = slave_fd

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_MAX_LINE_BYTES,
            cwd=cwd,
            env=dict(env),
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        _close_fds(master_fd, slave_fd)
        msg = f"Engine binary not found: {argv[0]}"
        raise SpawnError(msg) from exc
    except OSError as exc:
        _close_fds(master_fd, slave_fd)
        msg = f"Failed to spawn {argv[0]}: {exc}"
        raise SpawnError(msg) from exc

    # The child holds its own copy of the terminal's slave side.
    _close_fds(slave_fd)
    logger.info("spawned %s (pid %d, transport %s)", argv[0], process.pid, transport)
    return ProcessHandle(process, transport, master_fd=master_fd)


def _close_fds(*fds: int | None) -> None:
    for fd in fds:
        if fd is not None:
            with contextlib.suppress(OSError):
                os.close(fd)
