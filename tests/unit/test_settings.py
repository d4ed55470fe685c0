from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
import yaml

from qarunner.models.resilient import CallKind
from qarunner.settings import (
    DEFAULT_CONFIG_TEMPLATE,
    Settings,
    SettingsError,
    apply_env_overrides,
    dump_config,
    load_settings,
)


def test_defaults_without_config_file() -> None:
    settings = load_settings(None, env={})

    assert settings.orchestrator.max_retries == 3
    assert settings.orchestrator.to_settings().max_loop_iterations == 50
    assert settings.models.fallback is None
    assert settings.models.call_timeouts().for_kind(CallKind.SUMMARY) == 300.0
    assert settings.models.call_timeouts().for_kind(CallKind.OBSTACLE) == 60.0
    assert settings.orchestrator.to_settings().clear_obstacles
    assert settings.orchestrator.to_settings().max_obstacle_clear_attempts == 3
    assert settings.logging.level == "INFO"


def test_template_round_trips_through_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "qarunner.yaml"
    dump_config(config_path, DEFAULT_CONFIG_TEMPLATE)

    assert yaml.safe_load(config_path.read_text(encoding="utf-8")) == DEFAULT_CONFIG_TEMPLATE
    settings = load_settings(config_path, env={})
    assert settings.models.primary == "gpt-4o-mini"
    assert settings.models.api_key is None
    assert settings.circuit_breaker.build().failure_threshold == 5


def test_partial_config_overrides_selected_values(tmp_path: Path) -> None:
    config_path = tmp_path / "qarunner.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            orchestrator:
              test_timeout_minutes: 5
              clear_obstacles: false
            models:
              fallback: gpt-4o
              timeouts:
                selector: 15
            logging:
              level: debug
            """
        ),
        encoding="utf-8",
    )

    settings = load_settings(config_path, env={})

    assert settings.orchestrator.test_timeout_minutes == 5
    assert not settings.orchestrator.to_settings().clear_obstacles
    assert settings.models.fallback == "gpt-4o"
    assert settings.models.call_timeouts().for_kind(CallKind.SELECTOR) == 15.0
    assert settings.models.call_timeouts().for_kind(CallKind.PLAN) == 120.0
    assert settings.logging.level == "DEBUG"


@pytest.mark.parametrize(
    "body",
    [
        "orchestrator:\n  unknown_key: 1\n",
        "orchestrator:\n  max_obstacle_clear_attempts: 0\n",
        "models:\n  timeouts:\n    bogus: 10\n",
        "models:\n  timeouts:\n    plan: 0\n",
        "logging:\n  level: chatty\n",
        "- just\n- a list\n",
        "orchestrator: [unclosed\n",
    ],
)
def test_invalid_configs_raise_settings_error(tmp_path: Path, body: str) -> None:
    config_path = tmp_path / "qarunner.yaml"
    config_path.write_text(body, encoding="utf-8")

    with pytest.raises(SettingsError):
        load_settings(config_path, env={})


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(SettingsError, match="not found"):
        load_settings(tmp_path / "absent.yaml", env={})


def test_env_overrides_apply_without_clobbering_configured_key() -> None:
    base = Settings()
    env = {
        "OPENAI_API_KEY": "sk-env",
        "QARUNNER_MODEL": "gpt-4.1-mini",
        "QARUNNER_FALLBACK_MODEL": "gpt-4o",
        "QARUNNER_TIMEOUT": "45",
    }

    updated = apply_env_overrides(base, env)

    assert updated.models.api_key == "sk-env"
    assert updated.models.primary == "gpt-4.1-mini"
    assert updated.models.fallback == "gpt-4o"
    assert updated.models.request_timeout == 45.0
    assert base.models.api_key is None

    configured = Settings.model_validate({"models": {"api_key": "sk-file"}})
    assert apply_env_overrides(configured, {"QARUNNER_API_KEY": "sk-env"}).models.api_key == "sk-file"


def test_non_numeric_timeout_override_is_ignored() -> None:
    updated = apply_env_overrides(Settings(), {"QARUNNER_TIMEOUT": "soon"})

    assert updated.models.request_timeout == 120.0
