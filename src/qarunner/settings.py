"""Typed configuration loaded from YAML with environment overrides."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models.circuit import CircuitBreaker
from .models.resilient import DEFAULT_POOL_SIZE, CallKind, CallTimeouts
from .orchestrator import OrchestratorSettings

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "qarunner.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "orchestrator": {
        "max_retries": 3,
        "max_loop_iterations": 50,
        "test_timeout_minutes": 30,
        "clear_obstacles": True,
        "max_obstacle_clear_attempts": 3,
    },
    "models": {
        "primary": "gpt-4o-mini",
        "fallback": "",
        "base_url": "",
        "api_key": "",
        "pool_size": DEFAULT_POOL_SIZE,
        "request_timeout": 120,
        "timeouts": {
            "plan": 120,
            "repair": 120,
            "selector": 60,
            "summary": 300,
            "obstacle": 60,
            "suggestion": 60,
        },
    },
    "circuit_breaker": {
        "failure_threshold": 5,
        "reset_timeout_seconds": 60,
    },
    "logging": {
        "level": "INFO",
    },
}


class SettingsError(ValueError):
    """Raised when configuration cannot be read or fails validation."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class OrchestratorSection(_Section):
    max_retries: int = Field(3, ge=0)
    max_loop_iterations: int = Field(50, ge=1)
    test_timeout_minutes: float = Field(30, gt=0)
    clear_obstacles: bool = True
    max_obstacle_clear_attempts: int = Field(3, ge=1)

    def to_settings(self) -> OrchestratorSettings:
        return OrchestratorSettings(
            max_retries=self.max_retries,
            max_loop_iterations=self.max_loop_iterations,
            test_timeout_minutes=self.test_timeout_minutes,
            clear_obstacles=self.clear_obstacles,
            max_obstacle_clear_attempts=self.max_obstacle_clear_attempts,
        )


class ModelsSection(_Section):
    primary: str = "gpt-4o-mini"
    fallback: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    pool_size: int = Field(DEFAULT_POOL_SIZE, ge=1)
    request_timeout: float = Field(120.0, gt=0)
    timeouts: Dict[str, float] = Field(default_factory=dict)

    @field_validator("fallback", "base_url", "api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("timeouts")
    @classmethod
    def _known_call_kinds(cls, value: Dict[str, float]) -> Dict[str, float]:
        known = {kind.value for kind in CallKind}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(f"Unknown call kind(s) in timeouts: {', '.join(unknown)}")
        for key, seconds in value.items():
            if seconds <= 0:
                raise ValueError(f"Timeout for '{key}' must be positive")
        return value

    def call_timeouts(self) -> CallTimeouts:
        return CallTimeouts.from_mapping(self.timeouts)


class CircuitBreakerSection(_Section):
    failure_threshold: int = Field(5, ge=1)
    reset_timeout_seconds: float = Field(60.0, gt=0)

    def build(self, name: str = "ai-service") -> CircuitBreaker:
        return CircuitBreaker(
            name=name,
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout_seconds,
        )


class LoggingSection(_Section):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _valid_level(cls, value: str) -> str:
        return normalise_log_level(value)


class Settings(_Section):
    orchestrator: OrchestratorSection = Field(default_factory=OrchestratorSection)
    models: ModelsSection = Field(default_factory=ModelsSection)
    circuit_breaker: CircuitBreakerSection = Field(default_factory=CircuitBreakerSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)


def normalise_log_level(value: str) -> str:
    """Upper-case ``value`` and check it names a standard logging level."""
    name = (value or "").strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ValueError(f"Unknown log level: {value!r}")
    return name


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read ``path`` (when given), validate it and apply environment overrides."""
    data: Dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise SettingsError(f"Config file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
        except yaml.YAMLError as error:
            raise SettingsError(f"Failed to parse config: {error}") from error
        if not isinstance(loaded, dict):
            raise SettingsError("Configuration must be a mapping at the top level.")
        data = loaded

    try:
        settings = Settings.model_validate(data)
    except ValidationError as error:
        raise SettingsError(f"Invalid configuration: {error}") from error
    return apply_env_overrides(settings, os.environ if env is None else env)


def apply_env_overrides(settings: Settings, env: Mapping[str, str]) -> Settings:
    """Return a copy of ``settings`` with ``QARUNNER_*`` variables applied."""
    models = settings.models.model_copy()
    api_key = env.get("QARUNNER_API_KEY") or env.get("OPENAI_API_KEY")
    if api_key and not models.api_key:
        models.api_key = api_key
    if env.get("QARUNNER_MODEL"):
        models.primary = env["QARUNNER_MODEL"]
    if env.get("QARUNNER_FALLBACK_MODEL"):
        models.fallback = env["QARUNNER_FALLBACK_MODEL"]
    timeout_override = env.get("QARUNNER_TIMEOUT")
    if timeout_override:
        try:
            parsed = float(timeout_override)
        except ValueError:
            LOGGER.warning("Ignoring non-numeric QARUNNER_TIMEOUT=%r", timeout_override)
        else:
            if parsed > 0:
                models.request_timeout = parsed
    return settings.model_copy(update={"models": models})


def dump_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Write ``config_data`` as YAML, creating parent directories as needed."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


__all__ = [
    "CircuitBreakerSection",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "LoggingSection",
    "ModelsSection",
    "OrchestratorSection",
    "Settings",
    "SettingsError",
    "apply_env_overrides",
    "dump_config",
    "load_settings",
    "normalise_log_level",
]
