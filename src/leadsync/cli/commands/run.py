"""Run command for the leadsync CLI."""

from __future__ import annotations

import asyncio

import typer
from pydantic import ValidationError

from leadsync.api.types import ScrapeRequest
from leadsync.exceptions import LeadsyncError

from ..helpers import create_manager, get_config, watch_job
from ..output import console, print_error, render_job_result


def run(
    query: str = typer.Argument(..., help="Search query, e.g. 'coffee shops in Jakarta'"),
    max_results: int | None = typer.Option(
        None,
        "--max-results",
        "-n",
        min=1,
        help="Maximum number of places to scrape",
    ),
    min_score: int | None = typer.Option(
        None,
        "--min-score",
        min=0,
        max=100,
        help="Drop leads scoring below this value (0-100)",
    ),
    skip_enrichment: bool = typer.Option(
        False,
        "--skip-enrichment",
        help="Skip contact enrichment",
    ),
    skip_outreach: bool = typer.Option(
        False,
        "--skip-outreach",
        help="Skip outreach message generation",
    ),
    product_context: str | None = typer.Option(
        None,
        "--product-context",
        help="What you sell, used to tailor outreach",
    ),
    language: str | None = typer.Option(
        None,
        "--language",
        help="Outreach language code (e.g. en, id)",
    ),
    detach: bool = typer.Option(
        False,
        "--detach",
        "-d",
        help="Exit right after the job is submitted",
    ),
) -> None:
    """Start a scrape job and watch its progress.

    Example:
        leadsync run "coffee shops in Jakarta" --max-results 50
    """
    try:
        request = ScrapeRequest(
            query=query,
            max_results=max_results,
            min_score=min_score,
            skip_enrichment=skip_enrichment or None,
            skip_outreach=skip_outreach or None,
            product_context=product_context,
            language=language,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/red] {e}")
        raise typer.Exit(1) from None
    asyncio.run(_run_job(request, detach))


async def _run_job(request: ScrapeRequest, detach: bool) -> None:
    async with create_manager(get_config()) as manager:
        try:
            await manager.load_existing()
            job_id = await manager.start_job(request)
        except LeadsyncError as e:
            print_error(e)
            raise typer.Exit(1) from None

        console.print(f"Started job [cyan]{job_id}[/cyan]")
        if detach:
            return
        record = await watch_job(manager, job_id)
        if record is not None:
            render_job_result(record)
