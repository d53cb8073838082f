"""Configuration models and parser for clirelay.yaml."""

from clirelay.config.models import (
    DEFAULT_MODELS,
    BackendConfig,
    EngineConfig,
    RelayConfig,
)
from clirelay.config.parser import ConfigError, load_config

__all__ = [
    "DEFAULT_MODELS",
    "BackendConfig",
    "ConfigError",
    "EngineConfig",
    "RelayConfig",
    "load_config",
]
