"""Per-engine command lines, environments, transports and timeouts."""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from clirelay.config.models import BackendConfig, RelayConfig
from clirelay.engine.continuity import Continuity
from clirelay.engine.transport import TransportKind
from clirelay.engine.turn import TurnRequest
from clirelay.errors import MissingCredentialsError

logger = logging.getLogger(__name__)

#: Looks up an API key by provider name; None when absent.
CredentialLookup = Callable[[str], str | None]

#: Max V8 heap size (MB) for Node.js engine binaries.
_NODE_HEAP_LIMIT_MB = 2048

#: Reasoning-level suffixes of codex model ids that the binary does not accept.
_CODEX_MODEL_SUFFIX = re.compile(r"-(low|medium|high|xhigh|fast|balanced|instant)$")


@dataclass(frozen=True)
class LaunchPlan:
    """Everything needed to start the engine process of one turn."""

    argv: list[str]
    env: dict[str, str]
    transport: TransportKind
    timeout_s: float
    model: str
    backend: BackendConfig | None = None


@dataclass(frozen=True)
class EngineSpec:
    """Static description of one engine family."""

    name: str
    label: str
    transport: TransportKind
    build_args: Callable[[TurnRequest, Continuity, str, bool], list[str]]
    node_based: bool = True
    env: dict[str, str] = field(default_factory=dict)


# ------------------------------------------------------------------ #
# Argument builders
# ------------------------------------------------------------------ #


def _claude_args(
    turn: TurnRequest, continuity: Continuity, model: str, alternate: bool
) -> list[str]:
    args = [
        "--dangerously-skip-permissions",
        "--print",
        "--verbose",
        "--output-format",
        "stream-json",
    ]
    # Alternate backends take the model from ANTHROPIC_MODEL.
    if not alternate:
        args.extend(["--model", model])
    if continuity.resume and continuity.resume_id:
        args.extend(["-r", continuity.resume_id])
    else:
        args.extend(["--session-id", turn.session_id])
    args.append(turn.prompt)
    return args


def codex_base_model(model: str) -> str:
    """``gpt-5.1-codex-high`` -> ``gpt-5.1-codex``."""
    return _CODEX_MODEL_SUFFIX.sub("", model)


def _codex_args(
    turn: TurnRequest, continuity: Continuity, model: str, alternate: bool
) -> list[str]:
    if continuity.resume and continuity.resume_id:
        return [
            "exec",
            "--json",
            "--skip-git-repo-check",
            "resume",
            continuity.resume_id,
            turn.prompt,
        ]

    args = [
        "exec",
        "--json",
        "--skip-git-repo-check",
        "--dangerously-bypass-approvals-and-sandbox",
        "-C",
        turn.workspace_path or os.getcwd(),
    ]
    if model:
        args.extend(["-m", codex_base_model(model)])
    if turn.reasoning_effort:
        args.extend(["-c", f'model_reasoning_effort="{turn.reasoning_effort}"'])
    for image in turn.image_files:
        args.extend(["-i", image])
    args.extend(["--", turn.prompt])
    return args


def _stream_json_args(*extra: str) -> Callable[
    [TurnRequest, Continuity, str, bool], list[str]
]:
    def build(
        turn: TurnRequest, continuity: Continuity, model: str, alternate: bool
    ) -> list[str]:
        args = ["-y", "-m", model, "-o", "stream-json", *extra]
        if continuity.resume and continuity.resume_id:
            args.extend(["--resume", continuity.resume_id])
        args.append(turn.prompt)
        return args

    return build


ENGINE_SPECS: dict[str, EngineSpec] = {
    "claude": EngineSpec("claude", "Claude", "plain", _claude_args),
    "gemini": EngineSpec(
        "gemini",
        "Gemini",
        "pty",
        _stream_json_args(),
        env={"TERM": "xterm-256color"},
    ),
    "codex": EngineSpec(
        "codex",
        "Codex",
        "plain",
        _codex_args,
        node_based=False,
        env={"TERM": "xterm-256color"},
    ),
    "qwen": EngineSpec(
        "qwen",
        "Qwen",
        "pty",
        _stream_json_args("--include-partial-messages"),
        env={"TERM": "xterm-256color"},
    ),
}


def get_spec(engine: str) -> EngineSpec:
    try:
        return ENGINE_SPECS[engine]
    except KeyError:
        known = ", ".join(ENGINE_SPECS)
        msg = f"Unknown engine '{engine}' (known: {known})"
        raise ValueError(msg) from None


# ------------------------------------------------------------------ #
# Environment and credentials
# ------------------------------------------------------------------ #


def resolve_credential(
    backend: BackendConfig,
    config: RelayConfig,
    credentials: CredentialLookup | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """API key for *backend*: lookup first, then mapped and fallback env vars."""
    environ = os.environ if environ is None else environ
    if credentials is not None:
        key = credentials(backend.provider)
        if key:
            return key
    for var in (config.credentials.get(backend.provider), backend.env_var):
        if var and environ.get(var):
            return environ[var]
    return None


def _missing_credentials_message(backend: BackendConfig, model: str) -> str:
    hint = backend.env_var or f"{backend.provider.upper()}_API_KEY"
    return (
        f"API key for provider '{backend.provider}' is not configured "
        f"(needed by model '{model}').\n"
        f"Set {hint} in the environment or in .env, or map the provider "
        "under 'credentials' in clirelay.yaml."
    )


def _cap_node_heap(env: dict[str, str]) -> None:
    node_opts = env.get("NODE_OPTIONS", "")
    if "--max-old-space-size" not in node_opts:
        separator = " " if node_opts else ""
        heap_flag = f"--max-old-space-size={_NODE_HEAP_LIMIT_MB}"
        env["NODE_OPTIONS"] = f"{node_opts}{separator}{heap_flag}"


def build_launch(
    engine: str,
    turn: TurnRequest,
    continuity: Continuity,
    *,
    config: RelayConfig,
    binary: str,
    credentials: CredentialLookup | None = None,
    environ: Mapping[str, str] | None = None,
) -> LaunchPlan:
    """Build the argv, environment and timeout of one turn.

    Raises:
        MissingCredentialsError: The model is served by an alternate
            backend whose API key cannot be found.
    """
    spec = get_spec(engine)
    model = config.model_for(engine, turn.model)
    engine_config = config.engine(engine)
    backend = config.backend_for(model) if engine == "claude" else None

    env = dict(os.environ if environ is None else environ)
    env.update(spec.env)
    if spec.node_based:
        _cap_node_heap(env)

    timeout_s = engine_config.timeout_s
    if backend is not None:
        key = resolve_credential(backend, config, credentials, environ)
        if not key:
            raise MissingCredentialsError(
                _missing_credentials_message(backend, model)
            )
        env["ANTHROPIC_BASE_URL"] = backend.base_url
        env["ANTHROPIC_AUTH_TOKEN"] = key
        env["ANTHROPIC_MODEL"] = backend.model_override or model
        env.update(backend.extra_env)
        if backend.timeout_s is not None:
            timeout_s = backend.timeout_s
        logger.info("%s: model %s served by %s", engine, model, backend.base_url)

    argv = [binary, *spec.build_args(turn, continuity, model, backend is not None)]
    return LaunchPlan(
        argv=argv,
        env=env,
        transport=spec.transport,
        timeout_s=timeout_s,
        model=model,
        backend=backend,
    )


# ------------------------------------------------------------------ #
# Binary resolution
# ------------------------------------------------------------------ #


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _known_locations(engine: str) -> list[Path]:
    home = Path.home()
    candidates = []
    if engine == "claude":
        candidates.append(home / ".claude" / "local" / "claude")
    prefix = os.environ.get("PREFIX")
    if prefix:
        candidates.append(Path(prefix) / "bin" / engine)
    candidates.extend(
        [
            home / ".local" / "bin" / engine,
            home / "bin" / engine,
            Path("/usr/local/bin") / engine,
            Path("/usr/bin") / engine,
        ]
    )
    return candidates


def resolve_binary(engine: str, config: RelayConfig) -> str:
    """Locate the engine binary.

    Order: configured path, ``CLIRELAY_<ENGINE>_PATH``, known install
    locations, then ``PATH``. Falls back to the bare name so a missing
    binary surfaces as a spawn failure.
    """
    configured = config.engine(engine).path
    if configured:
        if _is_executable(Path(configured).expanduser()):
            return str(Path(configured).expanduser())
        logger.warning("%s: configured path %s is not executable", engine, configured)

    env_path = os.environ.get(f"CLIRELAY_{engine.upper()}_PATH")
    if env_path and _is_executable(Path(env_path)):
        return env_path

    for candidate in _known_locations(engine):
        if _is_executable(candidate):
            return str(candidate)

    return shutil.which(engine) or engine


def format_minutes(seconds: float) -> str:
    """``600`` -> ``10 minutes``."""
    minutes = seconds / 60
    unit = "minute" if minutes == 1 else "minutes"
    return f"{minutes:g} {unit}"
