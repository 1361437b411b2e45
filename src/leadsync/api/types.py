"""Wire models for the lead-scraper backend.

Defines request/response models and status types shared by the HTTP client,
the stream manager and the job registry. All models are Pydantic v2
BaseModel; response models ignore unknown fields so backend additions do not
break parsing, and ``Lead`` keeps them so nothing is lost on re-export.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Status values for scrape jobs.

    Inherits from ``str`` so statuses compare and serialize as plain strings.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})

LeadTier = Literal["hot", "warm", "cold"]
ExportFormat = Literal["csv", "json"]


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ScrapeRequest(BaseModel):
    """Parameters for launching a scrape job."""

    query: str = Field(min_length=1, description="Search string, e.g. 'coffee shops in Jakarta'")
    max_results: int | None = Field(default=None, ge=1)
    min_score: int | None = Field(default=None, ge=0, le=100)
    skip_enrichment: bool | None = None
    skip_outreach: bool | None = None
    product_context: str | None = None
    language: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Request body with unset options omitted."""
        return self.model_dump(mode="json", exclude_none=True)


class JobCreatedResponse(_Response):
    job_id: str
    status: JobStatus = JobStatus.PENDING


class JobProgress(_Response):
    """Incremental progress of a running job."""

    step: str = ""
    current: int = 0
    total: int = 0
    message: str | None = None


class JobSummary(_Response):
    """Final tally, present once a job reaches a terminal outcome."""

    total_leads: int = 0
    hot: int = 0
    warm: int = 0
    cold: int = 0
    duration_seconds: float | None = None
    total_scraped: int | None = None
    duplicates_skipped: int | None = None
    duplicate_jobs: list[str] | None = None


class OutreachData(_Response):
    email_subject: str = ""
    email_body: str = ""
    linkedin_message: str = ""
    whatsapp_message: str = ""
    cold_call_script: str = ""


class LeadResearch(_Response):
    overview: str = ""
    pain_points: list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    talking_points: list[str] = Field(default_factory=list)
    generated_at: str | None = None


class Lead(BaseModel):
    """A business record discovered by a job.

    ``outreach`` and ``research`` are filled in asynchronously after the
    initial discovery and arrive through ``lead_update`` events.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    place_id: str | None = None
    name: str
    score: float = 0
    tier: LeadTier = "cold"
    phone: str | None = None
    email: str | None = None
    whatsapp: str | None = None
    website: str | None = None
    address: str | None = None
    category: str | None = None
    rating: float | None = None
    review_count: int | None = None
    owner_name: str | None = None
    linkedin: str | None = None
    facebook: str | None = None
    instagram: str | None = None
    maps_url: str | None = None
    outreach: OutreachData | None = None
    research: LeadResearch | None = None

    @property
    def external_id(self) -> str | None:
        """Backend identifier used for deduplication (place id, else lead id)."""
        return self.place_id or self.id


class JobStatusResponse(_Response):
    """Server-side view of one job, including its original parameters."""

    job_id: str
    status: JobStatus
    query: str = ""
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    progress: JobProgress | None = None
    summary: JobSummary | None = None
    error: str | None = None
    max_results: int | None = None
    min_score: int | None = None
    skip_enrichment: bool | None = None
    skip_outreach: bool | None = None
    product_context: str | None = None

    def to_request(self) -> ScrapeRequest:
        """Rebuild the request this job was launched with."""
        return ScrapeRequest(
            query=self.query,
            max_results=self.max_results,
            min_score=self.min_score,
            skip_enrichment=self.skip_enrichment,
            skip_outreach=self.skip_outreach,
            product_context=self.product_context,
        )


class JobListResponse(_Response):
    jobs: list[JobStatusResponse] = Field(default_factory=list)
    total: int = 0


class CancelResponse(_Response):
    message: str = ""
    status: str = ""


class ResumeResponse(_Response):
    """Acknowledgement of a resume; ``skip_leads`` is the continuation marker."""

    message: str = ""
    status: str = ""
    skip_leads: int = 0
    stream_url: str | None = None


class StreamMessage(_Response):
    """Payload of one server-sent event.

    Which fields are populated depends on the event name: ``status`` carries
    step/current/total/message, ``lead`` and ``lead_update`` carry ``data``,
    ``error`` carries message/recoverable, ``complete`` carries ``summary``.
    """

    type: str | None = None
    step: str | None = None
    current: int | None = None
    total: int | None = None
    message: str | None = None
    data: dict[str, Any] | None = None
    recoverable: bool = False
    summary: JobSummary | None = None

    def to_progress(self) -> JobProgress:
        return JobProgress(
            step=self.step or "",
            current=self.current or 0,
            total=self.total or 0,
            message=self.message or None,
        )


__all__ = [
    "ACTIVE_STATUSES",
    "CancelResponse",
    "ExportFormat",
    "JobCreatedResponse",
    "JobListResponse",
    "JobProgress",
    "JobStatus",
    "JobStatusResponse",
    "JobSummary",
    "Lead",
    "LeadResearch",
    "LeadTier",
    "OutreachData",
    "ResumeResponse",
    "ScrapeRequest",
    "StreamMessage",
    "TERMINAL_STATUSES",
]
