"""Rich output formatting for the leadsync CLI.

Centralizes status colors, table builders and the user-facing wording of
backend errors so every command renders jobs the same way.
"""

from __future__ import annotations

import math
from datetime import datetime

from rich.console import Console
from rich.table import Table

from leadsync.api.types import JobProgress, JobStatus, JobStatusResponse, JobSummary
from leadsync.core.constants import DEFAULT_RATE_LIMIT_RETRY_SECONDS
from leadsync.exceptions import ApiError, LeadsyncError
from leadsync.jobs.registry import JobRecord

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Color schemes
# =============================================================================


class StatusColors:
    """Color mappings for job statuses and lead tiers."""

    JOB_STATUS: dict[JobStatus, str] = {
        JobStatus.PENDING: "yellow",
        JobStatus.RUNNING: "blue",
        JobStatus.COMPLETED: "green",
        JobStatus.FAILED: "red",
        JobStatus.CANCELLED: "dim",
    }

    TIER: dict[str, str] = {
        "hot": "red",
        "warm": "yellow",
        "cold": "cyan",
    }

    @classmethod
    def get_job_color(cls, status: JobStatus) -> str:
        return cls.JOB_STATUS.get(status, "white")


def format_status(status: JobStatus) -> str:
    color = StatusColors.get_job_color(status)
    return f"[{color}]{status.value}[/{color}]"


# =============================================================================
# Formatters
# =============================================================================


def format_duration(seconds: float | None) -> str:
    """Format a duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds, or None.

    Returns:
        Human-readable duration string (e.g., "5.2s", "3m 12s", "1h 30m").
    """
    if seconds is None:
        return "N/A"

    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def format_countdown(seconds: int) -> str:
    """Wording for "try again in ..." messages (seconds under a minute, else minutes)."""
    if seconds < 60:
        unit = "second" if seconds == 1 else "seconds"
        return f"{seconds} {unit}"
    minutes = math.ceil(seconds / 60)
    unit = "minute" if minutes == 1 else "minutes"
    return f"{minutes} {unit}"


def format_progress(progress: JobProgress | None) -> str:
    if progress is None:
        return "waiting"
    parts = []
    if progress.step:
        parts.append(progress.step)
    if progress.total:
        parts.append(f"{progress.current}/{progress.total}")
    if progress.message:
        parts.append(progress.message)
    return " · ".join(parts) or "waiting"


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def describe_api_error(exc: Exception) -> str:
    """User-facing message for a failed command.

    Distinguishes rate limiting (with a countdown), account restriction,
    expired sessions and generic failures.
    """
    if isinstance(exc, ApiError):
        if exc.is_rate_limited:
            wait = exc.retry_after or DEFAULT_RATE_LIMIT_RETRY_SECONDS
            return f"Too many requests. Please try again in {format_countdown(wait)}."
        if exc.is_banned:
            return (
                "Your account is temporarily restricted. "
                "Please wait before starting new jobs."
                + (f" ({exc.message})" if exc.message else "")
            )
        if exc.is_unauthorized:
            return "Your session has expired. Please sign in again."
        return exc.message or f"Request failed with status {exc.status_code}"
    if isinstance(exc, LeadsyncError):
        return str(exc)
    return f"Unexpected error: {exc}"


def print_error(exc: Exception) -> None:
    console.print(f"[red]Error:[/red] {describe_api_error(exc)}")


# =============================================================================
# Tables
# =============================================================================


def create_jobs_table() -> Table:
    """Table for the ``list`` command."""
    table = Table(title="Scrape Jobs")
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Query")
    table.add_column("Leads", justify="right")
    table.add_column("Created", style="dim")
    return table


def add_job_row(table: Table, job: JobStatusResponse) -> None:
    leads = str(job.summary.total_leads) if job.summary else "-"
    table.add_row(
        job.job_id,
        format_status(job.status),
        job.query,
        leads,
        job.created_at or "-",
    )


def create_summary_table(summary: JobSummary) -> Table:
    """Lead counts by tier for a finished job."""
    table = Table(show_header=True, title="Summary")
    table.add_column("Tier")
    table.add_column("Leads", justify="right")
    for tier, count in (("hot", summary.hot), ("warm", summary.warm), ("cold", summary.cold)):
        color = StatusColors.TIER[tier]
        table.add_row(f"[{color}]{tier}[/{color}]", str(count))
    table.add_row("[bold]total[/bold]", f"[bold]{summary.total_leads}[/bold]")
    return table


def format_job_line(record: JobRecord) -> str:
    """One-line live view of a job."""
    return (
        f"[bold]{record.query}[/bold] {format_status(record.status)} "
        f"{format_progress(record.progress)} · {len(record.leads)} leads"
    )


def render_job_result(record: JobRecord) -> None:
    """Print the final state of a watched job."""
    console.print(f"Job [cyan]{record.job_id}[/cyan] {format_status(record.status)}")
    if record.error:
        console.print(f"[red]{record.error}[/red]")
    if record.summary is not None:
        console.print(create_summary_table(record.summary))
        if record.summary.duration_seconds is not None:
            console.print(f"Duration: {format_duration(record.summary.duration_seconds)}")
        if record.summary.duplicates_skipped:
            console.print(f"[dim]Duplicates skipped: {record.summary.duplicates_skipped}[/dim]")
    else:
        console.print(f"Leads collected: {len(record.leads)}")
    if record.can_resume:
        console.print(f"[dim]Resume with: leadsync resume {record.job_id}[/dim]")


def render_status(job: JobStatusResponse) -> None:
    """Print the server's view of one job."""
    console.print(f"Job [cyan]{job.job_id}[/cyan] {format_status(job.status)}")
    console.print(f"Query: {job.query}")
    console.print(f"Progress: {format_progress(job.progress)}")
    if job.error:
        console.print(f"[red]Error:[/red] {job.error}")
    if job.summary is not None:
        console.print(create_summary_table(job.summary))
