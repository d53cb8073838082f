"""Resume-versus-new decision for each turn."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

#: Where Claude Code keeps per-project session logs.
CLAUDE_PROJECTS_DIR = Path.home() / ".claude" / "projects"


@dataclass(frozen=True)
class Continuity:
    """Whether to resume a native session, and which one."""

    resume: bool
    resume_id: str | None = None


def claude_session_exists(
    session_id: str, projects_dir: Path | None = None
) -> bool:
    """Whether Claude Code has a ``<session_id>.jsonl`` log in any project."""
    root = projects_dir if projects_dir is not None else CLAUDE_PROJECTS_DIR
    if not session_id or not root.is_dir():
        return False
    try:
        return any(
            (project / f"{session_id}.jsonl").is_file()
            for project in root.iterdir()
            if project.is_dir()
        )
    except OSError as exc:
        logger.warning("cannot scan %s: %s", root, exc)
        return False


class ContinuityResolver:
    """Decides per engine whether a turn resumes a native session.

    The claude engine's own session log is authoritative: the turn resumes
    only if a log exists for the logical session id, regardless of what the
    caller passes. Other engines resume when the caller supplies the native
    id minted by an earlier turn.
    """

    def __init__(
        self, session_exists: Callable[[str], bool] = claude_session_exists
    ) -> None:
        self._session_exists = session_exists

    def resolve(
        self,
        engine: str,
        session_id: str,
        native_resume_id: str | None = None,
    ) -> Continuity:
        if engine == "claude":
            if self._session_exists(session_id):
                logger.info("claude: resuming session %s", session_id)
                return Continuity(resume=True, resume_id=session_id)
            logger.info("claude: new session %s", session_id)
            return Continuity(resume=False)

        if native_resume_id:
            logger.info("%s: resuming native session %s", engine, native_resume_id)
            return Continuity(resume=True, resume_id=native_resume_id)
        return Continuity(resume=False)
