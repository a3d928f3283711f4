"""Command-line interface for RankHarvest."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from rankharvest import __version__
from rankharvest.artifacts import ArtifactStore
from rankharvest.change.diff import SnapshotDiffEngine
from rankharvest.config.config import Config, load_config
from rankharvest.container import DependencyContainer
from rankharvest.errors import InvalidSnapshotError
from rankharvest.observability.logging import configure_logging
from rankharvest.observability.metrics import start_metrics_server
from rankharvest.protocols import HarvestOutcome
from rankharvest.recovery.failed_targets import FailedTargetQueue
from rankharvest.scheduler import SweepState
from rankharvest.utils.atomic import read_json

console = Console()


def _load_config(ctx: click.Context) -> Config:
    config_path: Optional[Path] = ctx.obj["config_path"]
    config = load_config(config_path)
    config.monitoring.log_level = ctx.obj["log_level"]
    configure_logging(config.monitoring)
    if config.monitoring.prometheus_port:
        start_metrics_server(config.monitoring.prometheus_port)
    return config


async def confirm_continuation(state: SweepState, outcome: HarvestOutcome) -> bool:
    """Interactive continuation callback: asks the operator on the terminal."""
    console.print(
        f"[cyan]{state.targets_processed}/{state.targets_total}[/cyan] processed, "
        f"last target [bold]{outcome.target}[/bold] -> {outcome.status.value}"
    )
    return await asyncio.to_thread(click.confirm, "Continue with the next target?", default=True)


def _state_table(state: SweepState) -> Table:
    table = Table(title=f"Sweep {state.sweep_id or '-'}")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Started", state.started_at or "-")
    table.add_row("Completed", state.completed_at or "-")
    table.add_row("Running", str(state.is_running))
    table.add_row("Targets", str(state.targets_total))
    table.add_row("Processed", str(state.targets_processed))
    table.add_row("Skipped", str(state.targets_skipped))
    table.add_row("Errors", str(len(state.errors)))
    table.add_row("Paused", f"{state.paused} ({state.pause_reason})" if state.paused else "False")
    return table


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: str) -> None:
    """RankHarvest - polite leaderboard harvesting and change tracking."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None
    ctx.obj["log_level"] = log_level


@cli.command()
@click.option("--force", is_flag=True, help="Bypass cache and change estimation for every target")
@click.option("--interactive", is_flag=True, help="Ask before continuing at checkpoints")
@click.option("--confirm-every", type=int, default=None, help="Targets between confirmations")
@click.pass_context
def sweep(ctx: click.Context, force: bool, interactive: bool, confirm_every: Optional[int]) -> None:
    """Harvest every configured target once."""
    config = _load_config(ctx)

    async def run() -> SweepState:
        container = DependencyContainer(
            config=config,
            continuation=confirm_continuation,
            install_signal_handlers=True,
        )
        async with container.lifecycle():
            scheduler = await container.get_scheduler()
            return await scheduler.sweep(interactive=interactive, confirm_every=confirm_every, force_update=force)

    state = asyncio.run(run())
    console.print(_state_table(state))
    for error in state.errors:
        console.print(f"[red]{error.target}[/red] {error.kind}: {error.message}")
    if state.paused:
        raise SystemExit(2)


@cli.command()
@click.argument("region")
@click.argument("server")
@click.option("--force", is_flag=True, help="Ignore the cache and walk every page")
@click.pass_context
def harvest(ctx: click.Context, region: str, server: str, force: bool) -> None:
    """Harvest a single target."""
    config = _load_config(ctx)
    target = config.find_target(region, server)
    if target is None:
        raise click.BadParameter(f"{region}/{server} is not a configured target")

    async def run() -> HarvestOutcome:
        async with DependencyContainer(config=config).lifecycle() as container:
            harvester = await container.get_harvester()
            return await harvester.harvest(target, force_refresh=force)

    outcome = asyncio.run(run())
    color = "green" if outcome.ok else "red"
    console.print(f"[{color}]{target}: {outcome.status.value}[/{color}] records={len(outcome.records)}")
    if outcome.error_message:
        console.print(f"[red]{outcome.error_kind}: {outcome.error_message}[/red]")
        raise SystemExit(1)


@cli.command()
@click.argument("region")
@click.argument("server")
@click.option("--json-output", is_flag=True, help="Print the full report as JSON")
@click.pass_context
def diff(ctx: click.Context, region: str, server: str, json_output: bool) -> None:
    """Compare the two most recent snapshots of a target."""
    config = _load_config(ctx)
    target = config.find_target(region, server)
    if target is None:
        raise click.BadParameter(f"{region}/{server} is not a configured target")

    async def run():
        async with DependencyContainer(config=config).lifecycle() as container:
            store = await container.get_store()
            old = await store.get_previous_snapshot(target.key)
            new = await store.get_latest_snapshot(target.key)
            return SnapshotDiffEngine(config.diff).diff(old, new)

    try:
        report = asyncio.run(run())
    except InvalidSnapshotError as e:
        console.print(f"[yellow]Cannot diff {target}: {e}[/yellow]")
        raise SystemExit(1)

    if json_output:
        click.echo(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        return

    console.print(f"[bold]{target}[/bold] {report.classification.value}")
    table = Table()
    for column in ("added", "removed", "changed", "significant", "avg power gain", "change rate"):
        table.add_column(column, justify="right")
    table.add_row(
        str(report.added_count),
        str(report.removed_count),
        str(report.changed_count),
        str(report.significant_count),
        f"{report.average_power_gain:,.0f}",
        f"{report.change_rate:.1%}",
    )
    console.print(table)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the last persisted sweep checkpoint."""
    config = _load_config(ctx)
    data = read_json(config.sweep.state_file)
    if not data:
        console.print("[yellow]No sweep has been recorded yet[/yellow]")
        return
    console.print(_state_table(SweepState.model_validate(data)))


@cli.command()
@click.pass_context
def failed(ctx: click.Context) -> None:
    """List targets whose last harvest failed."""
    config = _load_config(ctx)
    entries = FailedTargetQueue(config.sweep.failed_targets_file, config.sweep.failed_targets_max).pending()
    if not entries:
        console.print("[green]No failed targets[/green]")
        return
    table = Table(title="Failed targets")
    for column in ("Target", "Kind", "Failures", "Last failure", "Message"):
        table.add_column(column)
    for entry in entries:
        table.add_row(entry.target_key, entry.kind, str(entry.failure_count), entry.last_failure_time, entry.message)
    console.print(table)


@cli.command()
@click.option("--max-age-hours", type=float, default=None, help="Override the configured artifact age")
@click.pass_context
def cleanup(ctx: click.Context, max_age_hours: Optional[float]) -> None:
    """Delete old debug artifacts."""
    config = _load_config(ctx)
    removed = ArtifactStore(config.debug).cleanup_old_artifacts(max_age_hours)
    console.print(f"Removed {removed} artifact(s)")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
