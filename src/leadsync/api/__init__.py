"""HTTP access to the lead-scraper backend."""

from leadsync.api.client import ScraperClient, TokenProvider, static_token
from leadsync.api.types import (
    JobProgress,
    JobStatus,
    JobStatusResponse,
    JobSummary,
    Lead,
    ScrapeRequest,
    StreamMessage,
)

__all__ = [
    "JobProgress",
    "JobStatus",
    "JobStatusResponse",
    "JobSummary",
    "Lead",
    "ScrapeRequest",
    "ScraperClient",
    "StreamMessage",
    "TokenProvider",
    "static_token",
]
