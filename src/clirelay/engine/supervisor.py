"""Engine supervisor: runs one turn of an engine CLI as a subprocess.

Each call to :meth:`EngineSupervisor.send_message` spawns a fresh engine
process, pipes its stdout through a :class:`~clirelay.stream.StreamParser`,
forwards every normalized event to the caller's status callback, and settles
a single future exactly once from whichever of exit, transport error or
timeout happens first.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from clirelay.config.models import RelayConfig
from clirelay.constants import StatusCallback
from clirelay.engine.continuity import ContinuityResolver
from clirelay.engine.helpers import OUTPUT_TAIL_CHARS, TailBuffer, format_stderr_preview
from clirelay.engine.registry import InterruptRegistry, InterruptResult
from clirelay.engine.specs import (
    CredentialLookup,
    LaunchPlan,
    build_launch,
    format_minutes,
    get_spec,
    resolve_binary,
)
from clirelay.engine.transport import ProcessHandle, spawn_process
from clirelay.engine.turn import TurnRequest, TurnResult
from clirelay.errors import (
    EngineError,
    EngineExitError,
    EngineTimeoutError,
    EngineTransportError,
    EngineTurnError,
    MissingCredentialsError,
    SpawnError,
)
from clirelay.stream import (
    DoneEvent,
    ErrorEvent,
    MessageStartEvent,
    NormalizedEvent,
    StatusEvent,
    StreamParser,
    get_grammar,
    is_terminal,
)
from clirelay.stream.tools import is_dangerous_command

logger = logging.getLogger(__name__)

#: Bytes requested per read from the engine's stdout.
_READ_CHUNK = 65_536

#: Seconds allowed for ``<binary> --version``.
_VERSION_TIMEOUT = 5.0

#: Status message prefixes that carry a shell command.
_SHELL_PREFIXES = ("Bash: ", "Shell: ")


def _discard(event: NormalizedEvent) -> None:
    """Status callback used when the caller passes none."""


class TurnRun:
    """Settlement state of one running turn.

    ``on_exit``, ``on_error`` and ``on_timeout`` may fire in any order and
    any number of times; only the first settles :attr:`future`, the rest
    are no-ops. Every settlement path cancels the timer and removes the
    process from the registry.
    """

    def __init__(
        self,
        *,
        label: str,
        session_id: str,
        handle: ProcessHandle,
        parser: StreamParser,
        registry: InterruptRegistry,
        on_status: StatusCallback,
        timeout_s: float,
    ) -> None:
        self.label = label
        self.session_id = session_id
        self.handle = handle
        self.parser = parser
        self.timeout_s = timeout_s
        self._registry = registry
        self._on_status = on_status
        self._loop = asyncio.get_running_loop()
        self.future: asyncio.Future[TurnResult] = self._loop.create_future()
        self._timer: asyncio.TimerHandle | None = None
        self._terminal_sent = False
        self._output = TailBuffer()
        self._stderr = TailBuffer()

    @property
    def settled(self) -> bool:
        return self.future.done()

    # ------------------------------------------------------------------ #
    # Event forwarding
    # ------------------------------------------------------------------ #

    def emit(self, event: NormalizedEvent) -> None:
        """Forward *event* to the status callback, at most one terminal."""
        if is_terminal(event):
            if self._terminal_sent:
                return
            self._terminal_sent = True
        if isinstance(event, StatusEvent) and event.category == "tool":
            self._check_command(event.message)
        self._on_status(event)

    def _check_command(self, message: str) -> None:
        for prefix in _SHELL_PREFIXES:
            if message.startswith(prefix) and is_dangerous_command(message):
                logger.warning(
                    "%s (%s): dangerous command detected: %s",
                    self.label,
                    self.session_id,
                    message[len(prefix) :],
                )
                return

    def feed(self, chunk: bytes) -> None:
        """Decode a stdout chunk and forward the resulting events in order."""
        self._output.append(chunk.decode(errors="replace"))
        for event in self.parser.consume(chunk):
            self.emit(event)

    def feed_eof(self) -> None:
        for event in self.parser.close():
            self.emit(event)

    def feed_stderr(self, chunk: bytes) -> None:
        text = chunk.decode(errors="replace")
        self._stderr.append(text)
        logger.debug("%s stderr: %s", self.label, text.rstrip())

    def output_tail(self) -> str:
        """Tail of the engine output, preferring stderr over stdout."""
        preview = format_stderr_preview(self._stderr.text)
        if preview:
            return preview[-OUTPUT_TAIL_CHARS:]
        return self._output.tail(OUTPUT_TAIL_CHARS)

    # ------------------------------------------------------------------ #
    # Settlement
    # ------------------------------------------------------------------ #

    def start_timer(self) -> None:
        self._timer = self._loop.call_later(self.timeout_s, self.on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def on_exit(self, code: int | None) -> None:
        if self.settled:
            logger.debug("%s: exit %s after settlement ignored", self.label, code)
            return
        self._cancel_timer()
        logger.info("%s (%s): exited with code %s", self.label, self.session_id, code)

        engine_error = self.parser.error_message()
        if engine_error is not None:
            self._reject(EngineTurnError(engine_error))
        elif code == 0:
            self._resolve()
        else:
            tail = self.output_tail()
            message = f"{self.label} CLI exited with code {code}"
            if tail:
                message += f": {tail}"
            self._reject(EngineExitError(message, code if code is not None else -1, tail))

    def on_error(self, exc: BaseException) -> None:
        if self.settled:
            # I/O errors can trail an exit that has already been handled.
            logger.warning(
                "%s (%s): ignoring transport error after settlement: %s",
                self.label,
                self.session_id,
                exc,
            )
            return
        self._cancel_timer()
        logger.error("%s (%s): transport error: %s", self.label, self.session_id, exc)
        if self.handle.is_running:
            self.handle.kill()
        error = EngineTransportError(f"{self.label} CLI transport error: {exc}")
        error.__cause__ = exc
        self._reject(error)

    def on_timeout(self) -> None:
        self._cancel_timer()
        if self.settled:
            return
        label = format_minutes(self.timeout_s)
        logger.error("%s (%s): timeout after %s", self.label, self.session_id, label)
        self.handle.kill()
        self._reject(
            EngineTimeoutError(f"{self.label} CLI timeout after {label}"),
            category="timeout",
        )

    def abandon(self) -> None:
        """Tear down after the caller stopped waiting; settles nothing."""
        self._cancel_timer()
        if self.handle.is_running:
            self.handle.kill()
        self._registry.unregister(self.session_id, self.handle)

    def _resolve(self) -> None:
        result = TurnResult(
            text=self.parser.final_response(),
            usage=self.parser.usage(),
            native_session_id=self.parser.native_session_id(),
        )
        self._registry.unregister(self.session_id, self.handle)
        self.future.set_result(result)
        # Dropped by emit() when the engine already sent its own terminal event.
        self.emit(
            DoneEvent(usage=result.usage, native_session_id=result.native_session_id)
        )

    def _reject(self, exc: EngineError, category: str = "runtime") -> None:
        self._registry.unregister(self.session_id, self.handle)
        self.future.set_exception(exc)
        self.emit(ErrorEvent(message=str(exc), category=category))


class TurnStream:
    """Async iterator over the events of one turn.

    Events are delivered through an :class:`asyncio.Queue` and the
    iteration ends after the terminal event. The turn's failure is raised
    from the iterator's end; on success :attr:`result` holds the
    :class:`TurnResult`.
    """

    def __init__(
        self, start: Callable[[StatusCallback], Awaitable[TurnResult]]
    ) -> None:
        self._start = start
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[TurnResult] | None = None
        self.result: TurnResult | None = None

    def _ensure_started(self) -> asyncio.Task[TurnResult]:
        if self._task is None:
            self._task = asyncio.ensure_future(self._start(self._queue.put_nowait))
            # The finished task itself marks the end of the queue.
            self._task.add_done_callback(self._queue.put_nowait)
        return self._task

    def __aiter__(self) -> TurnStream:
        self._ensure_started()
        return self

    async def __anext__(self) -> NormalizedEvent:
        task = self._ensure_started()
        item = await self._queue.get()
        if item is task:
            self.result = task.result()
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def aclose(self) -> None:
        """Cancel the turn if it is still running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


class EngineSupervisor:
    """Runs turns of one engine family.

    The interrupt registry is injected and may be shared by supervisors of
    several engines; it is the only state turns share.
    """

    def __init__(
        self,
        engine: str,
        *,
        config: RelayConfig,
        registry: InterruptRegistry,
        resolver: ContinuityResolver | None = None,
        credentials: CredentialLookup | None = None,
        binary: str | None = None,
    ) -> None:
        self.engine = engine
        self.spec = get_spec(engine)
        self.grammar = get_grammar(engine)
        self._config = config
        self._registry = registry
        self._resolver = resolver or ContinuityResolver()
        self._credentials = credentials
        self.binary = binary or resolve_binary(engine, config)

    @property
    def label(self) -> str:
        return self.spec.label

    async def send_message(
        self, turn: TurnRequest, on_status: StatusCallback | None = None
    ) -> TurnResult:
        """Run one turn and return its text, usage and native session id.

        Raises:
            SessionBusyError: A turn is already running for the session.
            MissingCredentialsError: The alternate backend has no API key.
            SpawnError: The engine could not be started.
            EngineTurnError: The engine reported an error record.
            EngineExitError: The engine exited with a nonzero status.
            EngineTimeoutError: The engine was killed after the timeout.
            EngineTransportError: Reading the engine's output failed.
        """
        on_status = on_status or _discard
        self._registry.reserve(turn.session_id)
        try:
            handle, plan = await self._launch(turn, on_status)
        except BaseException:
            self._registry.unregister(turn.session_id)
            raise
        self._registry.register(turn.session_id, handle, plan.transport)

        parser = StreamParser(self.grammar, strip_control=plan.transport == "pty")
        run = TurnRun(
            label=self.label,
            session_id=turn.session_id,
            handle=handle,
            parser=parser,
            registry=self._registry,
            on_status=on_status,
            timeout_s=plan.timeout_s,
        )
        reader: asyncio.Task[None] | None = None
        try:
            run.emit(MessageStartEvent())
            run.start_timer()
            reader = asyncio.create_task(self._pump(run))
            return await run.future
        except asyncio.CancelledError:
            run.abandon()
            raise
        except Exception:
            if not run.settled:
                run.abandon()
            raise
        finally:
            if reader is not None and not reader.done():
                reader.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reader
            handle.close()

    async def _launch(
        self, turn: TurnRequest, on_status: StatusCallback
    ) -> tuple[ProcessHandle, LaunchPlan]:
        """Build the command line for *turn* and start the engine."""
        continuity = self._resolver.resolve(
            self.engine, turn.session_id, turn.native_resume_id
        )
        try:
            plan = build_launch(
                self.engine,
                turn,
                continuity,
                config=self._config,
                binary=self.binary,
                credentials=self._credentials,
            )
        except MissingCredentialsError as exc:
            logger.error("%s: %s", self.label, exc)
            on_status(ErrorEvent(message=str(exc), category="config"))
            raise

        cwd = turn.workspace_path or self._config.workspace
        try:
            handle = await spawn_process(
                plan.argv, cwd=cwd, env=plan.env, transport=plan.transport
            )
        except SpawnError as exc:
            logger.error("%s: %s", self.label, exc)
            on_status(ErrorEvent(message=str(exc), category="spawn"))
            raise
        return handle, plan

    async def _pump(self, run: TurnRun) -> None:
        """Read the process to completion and report its exit."""
        process = run.handle.process
        stderr_task = asyncio.create_task(self._drain_stderr(run))
        try:
            if process.stdout is not None:
                while chunk := await process.stdout.read(_READ_CHUNK):
                    run.feed(chunk)
            run.feed_eof()
            await stderr_task
            code = await process.wait()
        except asyncio.CancelledError:
            stderr_task.cancel()
            raise
        except Exception as exc:
            stderr_task.cancel()
            run.on_error(exc)
            return
        run.on_exit(code)

    @staticmethod
    async def _drain_stderr(run: TurnRun) -> None:
        stream = run.handle.process.stderr
        if stream is None:
            return
        while chunk := await stream.read(_READ_CHUNK):
            run.feed_stderr(chunk)

    def stream_message(self, turn: TurnRequest) -> TurnStream:
        """Run one turn, yielding its events as an async iterator."""
        return TurnStream(lambda on_status: self.send_message(turn, on_status))

    def interrupt(self, session_id: str) -> InterruptResult:
        return self._registry.interrupt(session_id)

    async def is_available(self) -> bool:
        """Whether ``<binary> --version`` succeeds within five seconds."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.info("%s CLI not available: %s", self.label, exc)
            return False
        try:
            await asyncio.wait_for(process.communicate(), timeout=_VERSION_TIMEOUT)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            logger.info("%s CLI --version timed out", self.label)
            return False
        return process.returncode == 0
