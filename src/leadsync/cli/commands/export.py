"""Export command for the leadsync CLI."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from leadsync.api.types import ExportFormat
from leadsync.exceptions import LeadsyncError

from ..helpers import create_client, get_config
from ..output import console, print_error


def export(
    job_id: str | None = typer.Argument(None, help="Job ID (omit with --all)"),
    all_jobs: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Export leads of every job",
    ),
    fmt: str = typer.Option(
        "csv",
        "--format",
        "-f",
        help="Export format: csv or json",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file (default: leads-<job>.<format>)",
    ),
) -> None:
    """Download leads as CSV or JSON."""
    if (job_id is None) == (not all_jobs):
        console.print("[red]Error:[/red] Give either a job ID or --all")
        raise typer.Exit(1)
    if fmt not in ("csv", "json"):
        console.print(f"[red]Error:[/red] Unsupported format: {fmt}")
        raise typer.Exit(1)

    target = output or Path(f"leads-{job_id or 'all'}.{fmt}")
    content = asyncio.run(_export(None if all_jobs else job_id, fmt))  # type: ignore[arg-type]
    target.write_bytes(content)
    console.print(f"Wrote {len(content)} bytes to [cyan]{target}[/cyan]")


async def _export(job_id: str | None, fmt: ExportFormat) -> bytes:
    async with create_client(get_config()) as client:
        try:
            return await client.export_leads(job_id, fmt)
        except LeadsyncError as e:
            print_error(e)
            raise typer.Exit(1) from None
