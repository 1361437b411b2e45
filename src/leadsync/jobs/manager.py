"""Command surface for the leadsync job-state core.

``JobsManager`` wires the registry, the stream connection manager and the
fallback poller together and exposes the user-level commands: start,
cancel, resume, retry, dismiss and export. Only these commands raise to the
caller; stream and poll failures stay inside their components.

The poller runs only while at least one job is active. A registry listener
starts it when the first job becomes active and stops it when the last one
finishes.
"""

from __future__ import annotations

from collections.abc import Iterable

import httpx

from leadsync.api.client import ScraperClient, TokenProvider
from leadsync.api.errors import is_already_finished
from leadsync.api.types import (
    ExportFormat,
    JobStatus,
    JobStatusResponse,
    Lead,
    ScrapeRequest,
)
from leadsync.core.config import ClientConfig
from leadsync.core.logging import get_logger
from leadsync.core.time import parse_api_datetime
from leadsync.exceptions import (
    ApiError,
    CapacityExceededError,
    JobNotFoundError,
    JobNotResumableError,
    LeadsyncError,
)
from leadsync.jobs.poller import FallbackPoller
from leadsync.jobs.registry import JobRecord, JobRegistry, RegistryChange
from leadsync.stream.manager import EarlyUpdatePolicy, StreamConnectionManager
from leadsync.stream.sse import SSETransport
from leadsync.stream.transport import Transport

_logger = get_logger("jobs.manager")


def record_from_status(status: JobStatusResponse, leads: Iterable[Lead] = ()) -> JobRecord:
    """Build a ``JobRecord`` from the server's view of a job."""
    request = status.to_request() if status.query else None
    return JobRecord(
        job_id=status.job_id,
        query=status.query,
        status=status.status,
        progress=status.progress,
        leads=list(leads),
        summary=status.summary,
        error=status.error,
        started_at=parse_api_datetime(status.started_at or status.created_at),
        request=request,
    )


class JobsManager:
    """Job-state manager: registry + live channels + fallback polling.

    Every piece of mutable state lives on the instance, so several managers
    can coexist (e.g. in tests). Call ``teardown`` (or use ``async with``)
    to close all channels and stop the poller.

    Parameters
    ----------
    client:
        Backend client for commands, stream URLs and polling.
    transport:
        Live-update channel factory.
    registry:
        Job store; a fresh one with default limits is created if omitted.
    owns_resources:
        When True, ``teardown`` also closes ``client`` and ``transport``.
    """

    def __init__(
        self,
        client: ScraperClient,
        transport: Transport,
        *,
        registry: JobRegistry | None = None,
        poll_interval_seconds: float | None = None,
        max_poll_failures: int | None = None,
        early_update_policy: EarlyUpdatePolicy = "drop",
        owns_resources: bool = False,
    ) -> None:
        self._client = client
        self._transport = transport
        self._registry = registry or JobRegistry()
        self._owns_resources = owns_resources
        self._streams = StreamConnectionManager(
            self._registry,
            client,
            transport,
            early_update_policy=early_update_policy,
        )
        poller_kwargs: dict[str, float | int] = {}
        if poll_interval_seconds is not None:
            poller_kwargs["interval_seconds"] = poll_interval_seconds
        if max_poll_failures is not None:
            poller_kwargs["max_consecutive_failures"] = max_poll_failures
        self._poller = FallbackPoller(self._registry, client, **poller_kwargs)  # type: ignore[arg-type]
        self._starting = 0
        self._torn_down = False
        self._subscription = self._registry.subscribe(self._on_registry_change)

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        token_provider: TokenProvider | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> JobsManager:
        """Build a manager, its client and its SSE transport from config."""
        client = ScraperClient.from_config(
            config,
            token_provider=token_provider,
            transport=http_transport,
        )
        transport = SSETransport.from_config(config.stream, transport=http_transport)
        registry = JobRegistry(
            max_concurrent_jobs=config.max_concurrent_jobs,
            max_recent_jobs=config.max_recent_jobs,
        )
        return cls(
            client,
            transport,
            registry=registry,
            poll_interval_seconds=config.poller.interval_seconds,
            max_poll_failures=config.poller.max_consecutive_failures,
            early_update_policy=config.stream.early_update_policy,
            owns_resources=True,
        )

    # ─── Read accessors ───────────────────────────────────────────────

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def client(self) -> ScraperClient:
        return self._client

    @property
    def streams(self) -> StreamConnectionManager:
        return self._streams

    @property
    def poller(self) -> FallbackPoller:
        return self._poller

    @property
    def active_jobs(self) -> list[JobRecord]:
        return self._registry.list_active()

    @property
    def recent_jobs(self) -> list[JobRecord]:
        return self._registry.list_recent()

    @property
    def is_starting(self) -> bool:
        """True while a submission is in flight."""
        return self._starting > 0

    @property
    def can_start_new_job(self) -> bool:
        """Capacity check counting in-flight submissions as active."""
        return (
            self._registry.active_count + self._starting
            < self._registry.max_concurrent_jobs
        )

    def get(self, job_id: str) -> JobRecord | None:
        return self._registry.get(job_id)

    # ─── Commands ─────────────────────────────────────────────────────

    async def load_existing(self) -> None:
        """Populate the registry from the server.

        Active jobs are registered with their current leads and get a live
        channel; terminal jobs seed the recent list without leads. Skipped
        when no credential is available.
        """
        self._check_open()
        token = await self._client.get_auth_token()
        if not token:
            _logger.debug("jobs.load_skipped_no_token")
            return

        listing = await self._client.list_jobs()
        self._check_open()
        active = [job for job in listing.jobs if job.status.is_active]
        finished = [job for job in listing.jobs if job.status.is_terminal]

        for job in active:
            existing = self._registry.get(job.job_id)
            if existing is not None and not existing.is_terminal:
                continue
            leads: list[Lead] = []
            try:
                leads = await self._client.get_job_leads(job.job_id)
            except (LeadsyncError, ValueError) as exc:
                _logger.warning(
                    "jobs.load_leads_failed",
                    job_id=job.job_id,
                    error_type=type(exc).__name__,
                )
            self._check_open()
            self._registry.register(record_from_status(job, leads))
            await self._streams.open(job.job_id)

        finished.sort(
            key=lambda job: parse_api_datetime(job.completed_at or job.created_at),
            reverse=True,
        )
        self._registry.seed_recent(record_from_status(job) for job in finished)
        _logger.info(
            "jobs.loaded",
            active=len(active),
            recent=len(self._registry.list_recent()),
        )

    async def track_job(self, job_id: str) -> JobRecord:
        """Make a server-side job known locally, fetching its status.

        Active jobs are registered with their leads and get a live channel;
        terminal jobs are placed at the front of the recent list.
        """
        self._check_open()
        record = self._registry.get(job_id)
        if record is not None:
            return record
        status = await self._client.get_job_status(job_id)
        leads: list[Lead] = []
        if status.status.is_active:
            leads = await self._client.get_job_leads(job_id)
        self._check_open()
        self._registry.register(record_from_status(status, leads))
        if status.status.is_active:
            await self._streams.open(job_id)
        return self._registry.get(job_id) or record_from_status(status, leads)

    async def start_job(self, request: ScrapeRequest) -> str:
        """Submit a job, register it as pending and open its channel.

        Raises:
            CapacityExceededError: the concurrent-job cap is reached (no
                request is sent)
            ApiError / ApiConnectionError: the backend rejected the
                submission (the registry is left unchanged)
        """
        self._check_open()
        if not self.can_start_new_job:
            raise CapacityExceededError(
                f"At most {self._registry.max_concurrent_jobs} job(s) can run at once"
            )

        self._starting += 1
        try:
            created = await self._client.submit_job(request)
        finally:
            self._starting -= 1
        # Torn down while the submission was in flight
        self._check_open()

        job_id = created.job_id
        status = JobStatus.RUNNING if created.status is JobStatus.RUNNING else JobStatus.PENDING
        existing = self._registry.get(job_id)
        if existing is not None and not existing.is_terminal:
            _logger.warning("jobs.duplicate_job_id", job_id=job_id)
        else:
            self._registry.register(
                JobRecord(job_id=job_id, query=request.query, status=status, request=request)
            )
        _logger.info("jobs.started", job_id=job_id, query=request.query)
        await self._streams.open(job_id)
        return job_id

    async def cancel_job(self, job_id: str) -> None:
        """Cancel a job on the server and mark it cancelled locally at once.

        A server answer meaning the job is already finished counts as
        success, so cancelling twice is harmless.
        """
        self._check_open()
        try:
            await self._client.cancel_job(job_id)
        except ApiError as exc:
            if not is_already_finished(exc):
                raise
            _logger.info(
                "jobs.cancel_already_finished",
                job_id=job_id,
                status_code=exc.status_code,
            )
        self._streams.close(job_id)
        self._registry.upsert(job_id, status=JobStatus.CANCELLED)
        _logger.info("jobs.cancelled", job_id=job_id)

    async def resume_job(self, job_id: str) -> None:
        """Continue a failed or cancelled job that has leads, under the same id.

        Raises:
            JobNotFoundError: the job is not known locally
            JobNotResumableError: the job has no leads or is not
                failed/cancelled; use ``retry_job``
            CapacityExceededError: the concurrent-job cap is reached
        """
        self._check_open()
        record = self._registry.get(job_id)
        if record is None:
            raise JobNotFoundError(f"Unknown job: {job_id}")
        if not record.can_resume:
            raise JobNotResumableError(
                f"Job {job_id} cannot be resumed (status {record.status.value}, "
                f"{record.lead_count} leads); retry it instead"
            )
        if not self.can_start_new_job:
            raise CapacityExceededError(
                f"At most {self._registry.max_concurrent_jobs} job(s) can run at once"
            )

        self._starting += 1
        try:
            ack = await self._client.resume_job(job_id)
        finally:
            self._starting -= 1
        self._check_open()

        if self._registry.reactivate(job_id) is None:
            # Dismissed while the request was in flight
            self._registry.register(
                JobRecord(
                    job_id=job_id,
                    query=record.query,
                    leads=list(record.leads),
                    request=record.request,
                )
            )
        _logger.info("jobs.resumed", job_id=job_id, skip_leads=ack.skip_leads)
        await self._streams.open(job_id)

    async def retry_job(self, job_id: str) -> str:
        """Start a new job with the parameters of ``job_id``; returns the new id."""
        self._check_open()
        record = self._registry.get(job_id)
        request = record.request if record is not None else None
        if request is None:
            status = await self._client.get_job_status(job_id)
            request = status.to_request()
        new_id = await self.start_job(request)
        _logger.info("jobs.retried", job_id=job_id, new_job_id=new_id)
        return new_id

    async def resume_or_retry(self, job_id: str) -> str:
        """Resume when the job qualifies, otherwise retry. Returns the job id to watch."""
        record = self._registry.get(job_id)
        if record is not None and record.can_resume:
            await self.resume_job(job_id)
            return job_id
        return await self.retry_job(job_id)

    def dismiss_job(self, job_id: str) -> bool:
        """Remove a finished job from the recent list (local only)."""
        return self._registry.dismiss(job_id)

    async def export_leads(self, job_id: str | None, fmt: ExportFormat = "csv") -> bytes:
        """Download leads of one job, or of every job when ``job_id`` is None."""
        return await self._client.export_leads(job_id, fmt)

    # ─── Lifecycle ────────────────────────────────────────────────────

    async def teardown(self) -> None:
        """Close every channel and stop the poller. Idempotent."""
        if self._torn_down:
            return
        self._torn_down = True
        self._registry.unsubscribe(self._subscription)
        await self._streams.close_all()
        await self._poller.stop()
        if self._owns_resources:
            await self._transport.aclose()
            await self._client.aclose()
        _logger.debug("jobs.torn_down")

    async def __aenter__(self) -> JobsManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.teardown()

    def _check_open(self) -> None:
        if self._torn_down:
            raise LeadsyncError("JobsManager has been torn down")

    def _on_registry_change(self, change: RegistryChange) -> None:
        if self._registry.active_count > 0:
            if not self._poller.is_running:
                self._poller.start()
        elif self._poller.is_running:
            self._poller.request_stop()


__all__ = ["JobsManager", "record_from_status"]
