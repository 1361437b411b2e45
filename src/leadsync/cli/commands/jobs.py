"""Job inspection and control commands: list, status, cancel, resume."""

from __future__ import annotations

import asyncio

import typer

from leadsync.exceptions import LeadsyncError

from ..helpers import create_client, create_manager, get_config, watch_job
from ..output import (
    add_job_row,
    console,
    create_jobs_table,
    print_error,
    render_job_result,
    render_status,
)


def list_jobs(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
) -> None:
    """List your scrape jobs."""
    asyncio.run(_list_jobs(json_output))


async def _list_jobs(json_output: bool) -> None:
    async with create_client(get_config()) as client:
        try:
            listing = await client.list_jobs()
        except LeadsyncError as e:
            print_error(e)
            raise typer.Exit(1) from None

    if json_output:
        console.print_json(listing.model_dump_json())
        return
    if not listing.jobs:
        console.print("[dim]No jobs yet.[/dim]")
        return
    table = create_jobs_table()
    for job in listing.jobs:
        add_job_row(table, job)
    console.print(table)


def status(
    job_id: str = typer.Argument(..., help="Job ID"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
) -> None:
    """Show status, progress and summary of one job."""
    asyncio.run(_status(job_id, json_output))


async def _status(job_id: str, json_output: bool) -> None:
    async with create_client(get_config()) as client:
        try:
            job = await client.get_job_status(job_id)
        except LeadsyncError as e:
            print_error(e)
            raise typer.Exit(1) from None

    if json_output:
        console.print_json(job.model_dump_json())
    else:
        render_status(job)


def cancel(
    job_id: str = typer.Argument(..., help="Job ID"),
) -> None:
    """Cancel a running job. Cancelling a finished job is not an error."""
    asyncio.run(_cancel(job_id))


async def _cancel(job_id: str) -> None:
    async with create_manager(get_config()) as manager:
        try:
            await manager.cancel_job(job_id)
        except LeadsyncError as e:
            print_error(e)
            raise typer.Exit(1) from None
    console.print(f"Job [cyan]{job_id}[/cyan] cancelled")


def resume(
    job_id: str = typer.Argument(..., help="Job ID"),
    detach: bool = typer.Option(
        False,
        "--detach",
        "-d",
        help="Exit right after the job is resumed",
    ),
) -> None:
    """Resume a failed or cancelled job that has leads, otherwise retry it.

    Resuming continues the same job; retrying starts a new job with the
    same parameters.
    """
    asyncio.run(_resume(job_id, detach))


async def _resume(job_id: str, detach: bool) -> None:
    async with create_manager(get_config()) as manager:
        try:
            await manager.load_existing()
            await manager.track_job(job_id)
            watched_id = await manager.resume_or_retry(job_id)
        except LeadsyncError as e:
            print_error(e)
            raise typer.Exit(1) from None

        if watched_id == job_id:
            console.print(f"Resumed job [cyan]{job_id}[/cyan]")
        else:
            console.print(f"Retrying as new job [cyan]{watched_id}[/cyan]")
        if detach:
            return
        record = await watch_job(manager, watched_id)
        if record is not None:
            render_job_result(record)
