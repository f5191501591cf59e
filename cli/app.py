from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_export, render_jobs, render_poll
from datastore.mock_timeseries import build_default_collection
from logging_config import configure_logging
from services.collector import (
    NETATMO_JOB,
    SENSOR_COMMUNITY_JOB,
    CollectorService,
    build_default_collector,
)
from services.exporter import ArchiveExporter
from settings import ConfigurationError, get_settings
from storage.mock_blob import build_default_container


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


class ProviderName(str, Enum):
    sensor_community = SENSOR_COMMUNITY_JOB
    netatmo = NETATMO_JOB


app = typer.Typer(
    help="Run and inspect the environmental sensor readings collector.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


def _build_collector() -> CollectorService:
    try:
        return build_default_collector()
    except ConfigurationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Collector API base URL (defaults to COLLECTOR_API_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for the collector API to respond.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("run")
def run_command() -> None:
    """Run every collector and the exporter on their schedules until interrupted."""
    configure_logging()
    collector = _build_collector()
    typer.echo("Collector running. Press Ctrl-C to stop.")
    try:
        asyncio.run(collector.run_forever())
    except KeyboardInterrupt:
        typer.echo("Collector stopped.")


@app.command("poll")
def poll_command(
    provider: ProviderName = typer.Argument(..., help="Provider to poll once."),
) -> None:
    """Poll one provider once and store the readings."""
    configure_logging()
    collector = _build_collector()

    async def _poll():
        try:
            return await collector.poll(provider.value)
        finally:
            await collector.client.aclose()

    result = asyncio.run(_poll())
    render_poll(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("export")
def export_command() -> None:
    """Export every stored reading to the archive once and purge the store."""
    configure_logging()
    settings = get_settings()
    exporter = ArchiveExporter(
        source=build_default_collection(),
        archive=build_default_container(),
        work_dir=Path(settings.export_work_dir),
    )
    result = asyncio.run(exporter.export())
    render_export(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show the scheduling state reported by a running collector."""
    state = _get_state(ctx)
    health = state.client.get_health()
    jobs = state.client.list_jobs()
    render_jobs(health, jobs)


@app.command("trigger")
def trigger_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Job to run now (sensor-community, netatmo or export)."),
) -> None:
    """Ask a running collector to run a job immediately."""
    state = _get_state(ctx)
    state.client.trigger_job(name)
    typer.secho(f"Job {name} started.", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
