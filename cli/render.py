from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

from connectors.base import PollResult
from services.exporter import ExportResult


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_jobs(health: Dict[str, Any], jobs: Iterable[Dict[str, Any]]) -> None:
    echo_heading("Service")
    echo_key_values([("status", health.get("status"))])

    typer.echo()
    echo_heading("Jobs")
    rendered = False
    for job in jobs:
        rendered = True
        typer.echo(f"- {job.get('name')}")
        echo_key_values(
            ("  " + key, job.get(key))
            for key in (
                "interval_seconds",
                "running",
                "runs",
                "skipped_ticks",
                "last_started_at",
                "last_finished_at",
                "last_outcome",
            )
        )
        if job.get("last_error"):
            typer.secho(f"  last_error: {job['last_error']}", fg=typer.colors.RED)
    if not rendered:
        typer.echo("No jobs registered.")


def render_poll(result: PollResult) -> None:
    echo_heading("Poll Result")
    echo_key_values(
        [
            ("provider", result.provider.value),
            ("outcome", result.outcome.value),
            ("reading_count", result.reading_count),
        ]
    )
    if result.error:
        typer.secho(f"error: {result.error}", fg=typer.colors.RED)


def render_export(result: ExportResult) -> None:
    echo_heading("Export Result")
    echo_key_values(
        [
            ("outcome", result.outcome.value),
            ("archive_name", result.archive_name),
            ("row_count", result.row_count),
        ]
    )
    if result.error:
        typer.secho(f"error: {result.error}", fg=typer.colors.RED)
