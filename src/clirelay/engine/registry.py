"""Table of running engine processes, keyed by logical session id."""

from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Any

from clirelay.engine.transport import ProcessHandle, TransportKind
from clirelay.errors import SessionBusyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterruptResult:
    """Outcome of an interrupt request.

    ``method`` is ``"soft"`` or ``"signal"`` on success; ``reason`` is
    ``"no_active_process"`` or ``"process_gone"`` on failure.
    """

    success: bool
    method: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class _Entry:
    handle: ProcessHandle
    transport: TransportKind


class InterruptRegistry:
    """Active engine processes and best-effort cancellation.

    Thread-safe: the table is guarded by a ``threading.Lock``. An
    interrupt never settles a turn; the process's own exit does.

    A session id can be reserved before its process exists; the reserved
    slot counts as active and is filled by :meth:`register`.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry | None] = {}
        self._lock = threading.Lock()

    def reserve(self, session_id: str) -> None:
        """Claim *session_id* for a turn whose process is not spawned yet.

        Raises:
            SessionBusyError: The id is already reserved or registered.
        """
        with self._lock:
            if session_id in self._entries:
                msg = f"A turn is already running for session {session_id}"
                raise SessionBusyError(msg)
            self._entries[session_id] = None
        logger.debug("reserved session %s", session_id)

    def register(
        self,
        session_id: str,
        handle: ProcessHandle,
        transport: TransportKind | None = None,
    ) -> None:
        """Record *handle* as the running process of *session_id*.

        Fills the slot left by :meth:`reserve`, if any.

        Raises:
            SessionBusyError: Another process is registered for the id.
        """
        with self._lock:
            if self._entries.get(session_id) is not None:
                msg = f"A turn is already running for session {session_id}"
                raise SessionBusyError(msg)
            self._entries[session_id] = _Entry(handle, transport or handle.transport)
        logger.info(
            "registered pid %d for session %s (%s)",
            handle.pid,
            session_id,
            transport or handle.transport,
        )

    def unregister(self, session_id: str, handle: ProcessHandle | None = None) -> bool:
        """Drop the entry or reservation for *session_id*.

        With *handle*, the entry is only dropped if it still belongs to that
        handle. Returns whether an entry was removed.
        """
        with self._lock:
            if session_id not in self._entries:
                return False
            entry = self._entries[session_id]
            if handle is not None and (entry is None or entry.handle is not handle):
                return False
            del self._entries[session_id]
        logger.debug("unregistered session %s", session_id)
        return True

    def interrupt(self, session_id: str) -> InterruptResult:
        """Ask the engine running *session_id* to stop.

        A pseudo-terminal transport gets the soft ESC byte first; otherwise,
        or if that fails, the process receives SIGINT.
        """
        with self._lock:
            entry = self._entries.get(session_id)
        if entry is None:
            logger.info("interrupt: no active process for session %s", session_id)
            return InterruptResult(success=False, reason="no_active_process")

        handle = entry.handle
        if not handle.is_running:
            return InterruptResult(success=False, reason="process_gone")

        if entry.transport == "pty" and handle.soft_interrupt():
            logger.info("interrupt: sent ESC to pid %d (%s)", handle.pid, session_id)
            return InterruptResult(success=True, method="soft")

        if handle.send_signal(signal.SIGINT):
            logger.info("interrupt: sent SIGINT to pid %d (%s)", handle.pid, session_id)
            return InterruptResult(success=True, method="signal")
        return InterruptResult(success=False, reason="process_gone")

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._entries

    def active_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def process_info(self, session_id: str) -> dict[str, Any] | None:
        """Transport, pid and timing of the process running *session_id*."""
        with self._lock:
            entry = self._entries.get(session_id)
        if entry is None:
            return None
        started = entry.handle.started_at
        return {
            "session_id": session_id,
            "transport": entry.transport,
            "pid": entry.handle.pid,
            "start_time": started,
            "duration_s": time.time() - started,
        }
