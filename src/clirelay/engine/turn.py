"""Request and result models of one engine turn."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from clirelay.stream.events import Usage


class TurnRequest(BaseModel):
    """Parameters of one turn; immutable once submitted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    prompt: str = Field(description="User prompt passed to the engine")
    session_id: str = Field(
        alias="sessionId",
        description="Logical session id owned by the caller",
    )
    native_resume_id: str | None = Field(
        default=None,
        alias="nativeResumeId",
        description="Engine-minted id of the session to resume",
    )
    model: str | None = Field(
        default=None,
        description="Model id; the engine's configured default when omitted",
    )
    workspace_path: str | None = Field(
        default=None,
        alias="workspacePath",
        description="Working directory of the engine process",
    )
    reasoning_effort: str | None = Field(
        default=None,
        alias="reasoningEffort",
        description="Reasoning level for engines that accept one (codex)",
    )
    image_files: tuple[str, ...] = Field(
        default=(),
        alias="imageFiles",
        description="Image attachments for engines that accept them (codex)",
    )


class TurnResult(BaseModel):
    """Outcome of a successful turn."""

    model_config = ConfigDict(populate_by_name=True)

    text: str
    usage: Usage = Field(default_factory=Usage)
    native_session_id: str | None = Field(default=None, alias="nativeSessionId")
