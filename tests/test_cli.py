from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from qarunner.cli import app
from qarunner.settings import DEFAULT_CONFIG_TEMPLATE

runner = CliRunner()


def test_init_writes_default_config_and_refuses_overwrite(tmp_path: Path) -> None:
    config_path = tmp_path / "qarunner.yaml"

    first = runner.invoke(app, ["init", "--config", str(config_path)])
    second = runner.invoke(app, ["init", "--config", str(config_path)])
    forced = runner.invoke(app, ["init", "--config", str(config_path), "--force"])

    assert first.exit_code == 0, first.output
    assert yaml.safe_load(config_path.read_text(encoding="utf-8")) == DEFAULT_CONFIG_TEMPLATE
    assert second.exit_code == 1
    assert "Use --force to overwrite" in second.output
    assert forced.exit_code == 0


def test_offline_run_completes_and_prints_steps(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        [
            "run",
            "https://example.com",
            "--goal",
            "click Submit",
            "--goal",
            "take a screenshot",
            "--log-level",
            "WARNING",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Using offline planner." in result.output
    assert ": COMPLETED" in result.output
    assert "[SUCCESS] click Auto-dismiss: cookie_consent" in result.output
    assert "[SUCCESS] click Submit" in result.output
    assert "Summary: Test run completed successfully" in result.output


def test_obstacle_clearing_can_be_disabled_in_config(tmp_path: Path) -> None:
    config_path = tmp_path / "qarunner.yaml"
    config_path.write_text("orchestrator:\n  clear_obstacles: false\n", encoding="utf-8")

    result = runner.invoke(
        app,
        ["run", "https://example.com", "-g", "click Accept cookies", "--config", str(config_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Auto-dismiss" not in result.output
    assert "[SUCCESS] click Accept cookies" in result.output


def test_run_with_config_file_and_persona(tmp_path: Path) -> None:
    config_path = tmp_path / "qarunner.yaml"
    config_path.write_text("orchestrator:\n  max_loop_iterations: 2\n", encoding="utf-8")

    result = runner.invoke(
        app,
        [
            "run",
            "https://example.com",
            "-g",
            "wait 1 ms, take a screenshot",
            "--persona",
            "performance-hawk",
            "--config",
            str(config_path),
        ],
    )

    assert result.exit_code == 1
    assert ": FAILED" in result.output
    assert "maximum iterations (2)" in result.output


def test_run_rejects_unknown_persona() -> None:
    result = runner.invoke(app, ["run", "https://example.com", "--persona", "pirate"])

    assert result.exit_code != 0
    assert "Unknown persona" in result.output


def test_run_reports_invalid_config(tmp_path: Path) -> None:
    config_path = tmp_path / "qarunner.yaml"
    config_path.write_text("models:\n  pool_size: 0\n", encoding="utf-8")

    result = runner.invoke(app, ["run", "https://example.com", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_remote_run_without_api_key_exits(monkeypatch) -> None:
    monkeypatch.delenv("QARUNNER_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    result = runner.invoke(app, ["run", "https://example.com", "--use-remote"])

    assert result.exit_code == 1
    assert "No API key given" in result.output


def test_personas_lists_every_persona() -> None:
    result = runner.invoke(app, ["personas"])

    assert result.exit_code == 0
    for name in ("STANDARD", "CHAOS", "HACKER", "PERFORMANCE_HAWK"):
        assert name in result.output
