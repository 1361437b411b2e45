"""CLI command implementations."""

from .export import export
from .jobs import cancel, list_jobs, resume, status
from .run import run

__all__ = ["cancel", "export", "list_jobs", "resume", "run", "status"]
