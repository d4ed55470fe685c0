"""CLI commands for configuring and running autonomous browser tests."""

from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from .domain.persona import Persona
from .domain.schema import RunStatus
from .domain.test_run import TestRun
from .engine import AIObstacleDetector, KeywordObstacleDetector, ObstacleDetector
from .models import ChatCompletionsClient, ResilientCallClient, build_call_pool
from .orchestrator import AgentOrchestrator
from .planning import AIStepPlanner, LocalStepPlanner, Planner
from .reporting import OptimizationAdvisor, SummaryWriter
from .settings import (
    DEFAULT_CONFIG_NAME,
    DEFAULT_CONFIG_TEMPLATE,
    Settings,
    SettingsError,
    dump_config,
    load_settings,
    normalise_log_level,
)
from .tools.offline import OfflineExecutor

APP_HELP = "QA Runner CLI: plan, execute and self-heal browser test runs."
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(help=APP_HELP)


def load_config(config_path: Optional[Path]) -> Settings:
    """Load settings from ``config_path`` (or defaults) and translate errors for the CLI."""
    if config_path is not None and not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")
    try:
        return load_settings(config_path)
    except SettingsError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _configure_logging(level: str) -> None:
    try:
        level_name = normalise_log_level(level)
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error
    logging.basicConfig(level=level_name, format=LOG_FORMAT)
    logging.getLogger().setLevel(level_name)


def _build_planner(
    settings: Settings,
    *,
    use_remote: bool,
    pool: Optional[ThreadPoolExecutor],
) -> Tuple[Planner, Optional[ResilientCallClient]]:
    """Select the model-backed planner or the offline one."""
    models_cfg = settings.models
    if not use_remote or pool is None:
        typer.echo("Using offline planner.")
        return LocalStepPlanner(), None

    typer.echo(f"Using chat-completions planner ({models_cfg.primary}).")
    client_kwargs = {"model": models_cfg.primary, "timeout": models_cfg.request_timeout}
    if models_cfg.base_url:
        client_kwargs["base_url"] = models_cfg.base_url
    if models_cfg.api_key:
        client_kwargs["api_key"] = models_cfg.api_key
    try:
        client = ChatCompletionsClient(**client_kwargs)
    except ValueError as error:
        if "api key" in str(error).lower():
            typer.echo(
                "No API key given. Set QARUNNER_API_KEY or OPENAI_API_KEY, "
                "or re-run with --no-use-remote to use the offline planner."
            )
        else:
            typer.echo(f"Failed to initialise chat client: {error}")
        raise typer.Exit(code=1) from error

    calls = ResilientCallClient(
        client,
        executor=pool,
        fallback_model=models_cfg.fallback,
        timeouts=models_cfg.call_timeouts(),
    )
    return AIStepPlanner(calls), calls


def _build_obstacle_detector(
    settings: Settings,
    calls: Optional[ResilientCallClient],
) -> Optional[ObstacleDetector]:
    if not settings.orchestrator.clear_obstacles:
        return None
    if calls is None:
        return KeywordObstacleDetector()
    return AIObstacleDetector(calls)


def _render_run(run: TestRun) -> None:
    typer.echo(f"Run {run.id}: {run.status.value}")
    if run.failure_reason:
        typer.echo(f"Reason: {run.failure_reason}")
    for index, record in enumerate(run.executed_steps, start=1):
        line = f"{index:>2}. [{record.status.value}] {record.step.action} {record.step.describe()}"
        if record.error_message:
            line += f" - {record.error_message}"
        typer.echo(line)
        if record.optimization_suggestion:
            typer.echo(f"      suggestion: {record.optimization_suggestion}")

    summary = run.summary
    if summary is None:
        return
    typer.echo(f"Summary: {summary.outcome_short}")
    if summary.goal_overview:
        typer.echo(f"Goals: {summary.goal_overview}")
    if summary.failure_analysis:
        typer.echo(f"Failure analysis: {summary.failure_analysis}")
    if summary.actionable_fix:
        typer.echo(f"Suggested fix: {summary.actionable_fix}")
    for achievement in summary.key_achievements:
        typer.echo(f"  - {achievement}")


@app.command()
def init(
    config: Path = typer.Option(Path(DEFAULT_CONFIG_NAME), "--config", "-c", help="Where to write the config file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file."),
) -> None:
    """Write the default configuration file."""
    if config.exists() and not force:
        typer.echo(f"Config already exists at {config}. Use --force to overwrite.")
        raise typer.Exit(code=1)
    dump_config(config, copy.deepcopy(DEFAULT_CONFIG_TEMPLATE))
    typer.echo(f"Wrote default configuration to {config}")


@app.command()
def run(
    url: str = typer.Argument(..., help="URL of the page under test."),
    goal: Optional[List[str]] = typer.Option(None, "--goal", "-g", help="Test goal; repeat for several."),
    persona: str = typer.Option(Persona.STANDARD.value, "--persona", "-p", help="Planning persona."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a YAML config file."),
    use_remote: bool = typer.Option(
        False,
        "--use-remote/--no-use-remote",
        help="Plan with the configured chat-completions model instead of the offline planner.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
) -> None:
    """Plan and execute one test run against the offline executor."""
    if not url.strip():
        raise typer.BadParameter("URL must not be empty.")
    settings = load_config(config)
    try:
        selected_persona = Persona.parse(persona)
    except ValueError as error:
        choices = ", ".join(item.value for item in Persona)
        raise typer.BadParameter(f"Unknown persona '{persona}'. Choose from: {choices}") from error
    _configure_logging(log_level or settings.logging.level)

    pool = build_call_pool(settings.models.pool_size) if use_remote else None
    try:
        planner, calls = _build_planner(settings, use_remote=use_remote, pool=pool)
        orchestrator = AgentOrchestrator(
            planner=planner,
            executor=OfflineExecutor(),
            settings=settings.orchestrator.to_settings(),
            summary_writer=SummaryWriter(calls, breaker=settings.circuit_breaker.build()),
            obstacle_detector=_build_obstacle_detector(settings, calls),
            advisor=OptimizationAdvisor(calls),
        )
        test_run = TestRun.create(url.strip(), goal or [], selected_persona)
        orchestrator.execute(test_run)
    finally:
        if pool is not None:
            pool.shutdown(wait=True, cancel_futures=True)

    _render_run(test_run)
    if test_run.status is not RunStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command()
def personas() -> None:
    """List the available planning personas."""
    for item in Persona:
        typer.echo(f"{item.value:<18} temperature={item.temperature:.1f}  {item.description}")


__all__ = ["app", "load_config"]
