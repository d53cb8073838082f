"""Exception taxonomy for engine turns."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every failure that settles a turn."""


class SpawnError(EngineError):
    """The engine binary is missing or could not be executed."""


class MissingCredentialsError(EngineError):
    """An alternate backend was selected but no API key is configured."""


class SessionBusyError(EngineError):
    """A turn is already running for this logical session id."""


class EngineTimeoutError(EngineError):
    """The engine did not exit before the turn timeout and was killed."""


class EngineTransportError(EngineError):
    """Reading from the engine process failed."""


class EngineTurnError(EngineError):
    """The engine reported a structured error record for the turn."""


class EngineExitError(EngineError):
    """The engine exited with a nonzero status."""

    def __init__(self, message: str, exit_code: int, output_tail: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output_tail = output_tail
