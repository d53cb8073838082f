"""Engine process supervision: specs, transports, registry and supervisor."""

from clirelay.engine.continuity import Continuity, ContinuityResolver
from clirelay.engine.registry import InterruptRegistry, InterruptResult
from clirelay.engine.supervisor import EngineSupervisor, TurnRun, TurnStream
from clirelay.engine.transport import ProcessHandle, TransportKind, spawn_process
from clirelay.engine.turn import TurnRequest, TurnResult

__all__ = [
    "Continuity",
    "ContinuityResolver",
    "EngineSupervisor",
    "InterruptRegistry",
    "InterruptResult",
    "ProcessHandle",
    "TransportKind",
    "TurnRequest",
    "TurnResult",
    "TurnRun",
    "TurnStream",
    "spawn_process",
]
