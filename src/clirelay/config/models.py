"""Pydantic v2 models for clirelay.yaml configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from clirelay.constants import DEFAULT_TIMEOUT_S, ENGINE_NAMES, EngineName

#: Model each engine runs when neither the turn nor the config names one.
DEFAULT_MODELS: dict[str, str] = {
    "claude": "claude-sonnet-4-5-20250929",
    "gemini": "gemini-3-pro-preview",
    "codex": "gpt-5.1-codex",
    "qwen": "coder-model",
}


class EngineConfig(BaseModel):
    """Settings for one engine binary."""

    model_config = ConfigDict(extra="forbid")

    path: str | None = Field(
        default=None,
        description="Explicit path to the engine binary",
    )
    default_model: str | None = Field(
        default=None,
        description="Model used when a turn does not name one",
    )
    timeout_s: float = Field(
        default=DEFAULT_TIMEOUT_S,
        gt=0,
        description="Seconds before a running turn is killed",
    )
    enabled: bool = Field(default=True)


class BackendConfig(BaseModel):
    """An Anthropic-compatible backend the claude engine can be pointed at.

    A backend is selected when the turn's model id is listed in ``models``
    or starts with ``model_prefix``.
    """

    model_config = ConfigDict(extra="forbid")

    models: list[str] = Field(
        default_factory=list,
        description="Exact model ids served by this backend",
    )
    model_prefix: str | None = Field(
        default=None,
        description="Model id prefix served by this backend, e.g. 'deepseek-'",
    )
    base_url: str = Field(description="Value for ANTHROPIC_BASE_URL")
    provider: str = Field(description="Credential lookup key, e.g. 'deepseek'")
    env_var: str | None = Field(
        default=None,
        description="Environment variable holding the key when the lookup has none",
    )
    model_override: str | None = Field(
        default=None,
        description="Value for ANTHROPIC_MODEL (defaults to the model id)",
    )
    timeout_s: float | None = Field(
        default=None,
        gt=0,
        description="Turn timeout for this backend (overrides the engine's)",
    )
    extra_env: dict[str, str] = Field(
        default_factory=dict,
        description="Additional environment variables for the engine process",
    )

    @model_validator(mode="after")
    def _validate_selector(self) -> BackendConfig:
        if not self.models and not self.model_prefix:
            msg = "Backend requires 'models' or 'model_prefix'"
            raise ValueError(msg)
        return self

    def matches(self, model: str | None) -> bool:
        if not model:
            return False
        if model in self.models:
            return True
        return bool(self.model_prefix and model.startswith(self.model_prefix))


def _default_backends() -> dict[str, BackendConfig]:
    return {
        "deepseek": BackendConfig(
            model_prefix="deepseek-",
            base_url="https://api.deepseek.com/anthropic",
            provider="deepseek",
            env_var="DEEPSEEK_API_KEY",
            timeout_s=900,
        ),
        "zai": BackendConfig(
            models=["glm-4-6"],
            base_url="https://api.z.ai/api/anthropic",
            provider="zai",
            env_var="ZAI_API_KEY",
            model_override="GLM-4.6",
            timeout_s=3600,
            extra_env={"API_TIMEOUT_MS": "3000000"},
        ),
    }


class RelayConfig(BaseModel):
    """Top-level clirelay.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    workspace: str | None = Field(
        default=None,
        description="Default working directory for engine processes",
    )
    credentials: dict[str, str] = Field(
        default_factory=dict,
        description="Provider name to environment variable mappings",
    )
    engines: dict[EngineName, EngineConfig] = Field(
        default_factory=dict,
        description="Per-engine settings",
    )
    backends: dict[str, BackendConfig] = Field(
        default_factory=_default_backends,
        description="Alternate backends for the claude engine",
    )

    @model_validator(mode="after")
    def _fill_engine_defaults(self) -> RelayConfig:
        for name in ENGINE_NAMES:
            self.engines.setdefault(name, EngineConfig())
        return self

    def engine(self, name: str) -> EngineConfig:
        try:
            return self.engines[name]
        except KeyError:
            available = ", ".join(f"'{n}'" for n in ENGINE_NAMES)
            msg = f"Unknown engine '{name}' (available engines: {available})"
            raise ValueError(msg) from None

    def model_for(self, name: str, model: str | None = None) -> str:
        """The model a turn runs: explicit, configured default, then built-in."""
        return model or self.engine(name).default_model or DEFAULT_MODELS[name]

    def backend_for(self, model: str | None) -> BackendConfig | None:
        """The alternate backend serving *model*, if any."""
        for backend in self.backends.values():
            if backend.matches(model):
                return backend
        return None
