from __future__ import annotations

import logging
from pathlib import Path

import click

from autoqac.config import AutoQACConfig, load_config, save_config
from autoqac.engine import CleaningEngine
from autoqac.load_order import read_load_order
from autoqac.metrics import RunMetrics
from autoqac.models import KNOWN_GAME_MODES, ConfigurationError, RunOutcome
from autoqac.orchestrator import Orchestrator
from autoqac.state import (
    CleaningFinished,
    CleaningStarted,
    OperationChanged,
    PluginProcessed,
    ProgressUpdated,
    SubscriberLagged,
)
from autoqac.state.store import StateStore, StateTransitionError
from autoqac.xedit.process import AsyncProcessRunner


def _resolve_config_path(config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = Path.cwd() / config_path
    return config_path.resolve()


def _load(config_value: str) -> tuple[Path, AutoQACConfig]:
    config_path = _resolve_config_path(config_value)
    try:
        return config_path, load_config(config_path)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _apply_overrides(
    config: AutoQACConfig,
    *,
    load_order: str | None = None,
    xedit: str | None = None,
    launcher: str | None = None,
    game: str | None = None,
    timeout: float | None = None,
    partial_forms: bool | None = None,
) -> AutoQACConfig:
    if load_order:
        config.run.load_order = load_order
    if xedit:
        config.xedit.executable = xedit
    if launcher:
        config.launcher.executable = launcher
    if game:
        config.xedit.game_mode = game.upper()
    if timeout is not None:
        config.run.timeout_seconds = timeout
    if partial_forms is not None:
        config.run.partial_forms = partial_forms
    return config


def _echo_event(event: object) -> None:
    match event:
        case CleaningStarted(total=total):
            click.echo(f"Cleaning {total} plugins")
        case ProgressUpdated(current=current, total=total, item=item):
            click.echo(f"[{current}/{total}] {item}")
        case PluginProcessed(item=item, status=status, message=message):
            click.echo(f"  {item}: {status.value} - {message}")
        case OperationChanged(operation=operation) if operation:
            click.echo(operation)
        case SubscriberLagged(missed=missed):
            click.echo(f"({missed} progress events dropped)")
        case CleaningFinished():
            pass


def _build_engine(metrics: RunMetrics) -> CleaningEngine:
    store = StateStore()
    runner = AsyncProcessRunner(event_hook=metrics.record_process_event)
    return CleaningEngine(store, Orchestrator(store, runner=runner))


def _echo_summary(outcome: RunOutcome, metrics: RunMetrics) -> None:
    label = "partial" if outcome.partial else outcome.status.value
    click.echo(f"Run {label}: {outcome.aggregate.summary()}")
    click.echo(
        f"Cleaned: {outcome.cleaned}  Failed: {outcome.failed}  "
        f"Skipped: {outcome.skipped}  Pending: {outcome.pending}"
    )
    click.echo(
        f"Cleaning time: {metrics.total_cleaning_seconds:.1f}s total, "
        f"{metrics.average_cleaning_seconds:.1f}s per cleaned plugin"
    )
    click.echo(
        f"Processes: started {metrics.process_count('start')}, "
        f"timed out {metrics.process_count('timeout')}, "
        f"cancelled {metrics.process_count('cancelled')}"
    )
    if metrics.events_dropped:
        click.echo(f"Progress events dropped: {metrics.events_dropped}")


@click.group()
def cli() -> None:
    """AutoQAC: batch plugin cleaning with xEdit."""


@cli.command("init")
@click.option("--config", "config_value", default="autoqac.toml", show_default=True)
def init_command(config_value: str) -> None:
    config_path, config = _load(config_value)
    save_config(config_path, config)
    click.echo(f"Config: {config_path}")


@cli.command("plugins")
@click.option("--config", "config_value", default="autoqac.toml", show_default=True)
@click.option("--load-order", default=None, help="plugins.txt or loadorder.txt to read.")
def plugins_command(config_value: str, load_order: str | None) -> None:
    _, config = _load(config_value)
    _apply_overrides(config, load_order=load_order)
    if not config.run.load_order:
        raise click.ClickException("Load order file is not configured.")
    try:
        settings = config.to_run_settings()
        plugins = read_load_order(Path(config.run.load_order))
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    for position, name in enumerate(plugins, start=1):
        marker = " (skip)" if settings.should_skip(name) else ""
        click.echo(f"{position:>4} {name}{marker}")


@cli.command("clean")
@click.option("--config", "config_value", default="autoqac.toml", show_default=True)
@click.option("--load-order", default=None)
@click.option("--xedit", default=None, help="Path to the xEdit executable.")
@click.option("--launcher", default=None, help="Optional launcher that wraps xEdit.")
@click.option("--game", type=click.Choice(KNOWN_GAME_MODES, case_sensitive=False), default=None)
@click.option("--timeout", type=float, default=None, help="Per-plugin timeout in seconds.")
@click.option("--partial-forms/--no-partial-forms", default=None)
@click.option("-v", "--verbose", is_flag=True, default=False)
def clean_command(
    config_value: str,
    load_order: str | None,
    xedit: str | None,
    launcher: str | None,
    game: str | None,
    timeout: float | None,
    partial_forms: bool | None,
    verbose: bool,
) -> None:
    _configure_logging(verbose)
    _, config = _load(config_value)
    _apply_overrides(
        config,
        load_order=load_order,
        xedit=xedit,
        launcher=launcher,
        game=game,
        timeout=timeout,
        partial_forms=partial_forms,
    )

    metrics = RunMetrics()
    engine = _build_engine(metrics)
    stream = engine.subscribe()
    try:
        settings = config.to_run_settings()
        engine.update_settings(settings)
        engine.start(settings)
    except (ConfigurationError, StateTransitionError) as exc:
        stream.close()
        raise click.ClickException(str(exc)) from exc

    with stream:
        while True:
            try:
                event = stream.get(timeout=0.2)
                if event is not None:
                    metrics.record_event(event)
                    _echo_event(event)
                if isinstance(event, CleaningFinished):
                    break
                if event is None and not engine.is_running:
                    break
            except KeyboardInterrupt:
                if engine.cancel():
                    click.echo("Cancelling after the current plugin is stopped...")

        try:
            outcome = engine.wait()
        except Exception as exc:
            raise click.ClickException(f"Cleaning failed: {exc}") from exc

    if outcome is None:
        raise click.ClickException("Cleaning did not produce a result.")
    _echo_summary(outcome, metrics)
    if outcome.failed:
        click.get_current_context().exit(1)

