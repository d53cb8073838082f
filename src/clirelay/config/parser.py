"""Load and validate clirelay.yaml configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from clirelay.config.models import RelayConfig

DEFAULT_CONFIG_NAME = "clirelay.yaml"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> RelayConfig:
    """Load and validate a clirelay.yaml file.

    Args:
        path: Explicit config file path. If None, uses clirelay.yaml in
              the current directory when it exists, else the defaults.

    Returns:
        A validated RelayConfig instance.

    Raises:
        ConfigError: On a missing explicit file, bad YAML, or validation
            failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        _load_env(Path.cwd())
        return RelayConfig()
    raw = _read_yaml(config_path)
    _load_env(config_path.parent)
    return _validate(raw)


def _resolve_path(path: Path | None) -> Path | None:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    # An empty file means "all defaults".
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)
    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _validate(raw: dict[str, Any]) -> RelayConfig:
    try:
        return RelayConfig.model_validate(raw)
    except ValidationError as exc:
        parts: list[str] = []
        for err in exc.errors():
            loc = " → ".join(str(s) for s in err["loc"])
            msg = err["msg"]
            if "field required" in msg.lower():
                msg = "This field is required"
            elif "input should be" in msg.lower():
                msg = f"Invalid value: {msg}"
            parts.append(f"  {loc}: {msg}")
        joined = "\n".join(parts)
        msg = f"Config validation failed:\n{joined}"
        raise ConfigError(msg) from exc
