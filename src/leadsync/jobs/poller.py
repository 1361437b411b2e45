"""Fallback polling for jobs whose live-update channel is degraded.

The poller runs a fixed-interval loop while at least one job is active.
Each tick looks only at jobs the registry flags degraded; when there are
none the tick makes no network call. Otherwise it fetches the job list once
and reconciles each degraded job through the same registry primitives the
stream path uses, so the two sources can interleave safely.

The poller never opens or closes stream channels.
"""

from __future__ import annotations

import asyncio
from typing import Any

from leadsync.api.client import ScraperClient
from leadsync.api.types import JobProgress, JobStatus, JobStatusResponse
from leadsync.core.constants import (
    DEFAULT_MAX_POLL_FAILURES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    POLL_FAILURE_MESSAGE,
)
from leadsync.core.logging import get_logger
from leadsync.core.task_utils import spawn_logged
from leadsync.exceptions import LeadsyncError
from leadsync.jobs.registry import JobRegistry

_logger = get_logger("jobs.poller")


def merge_progress(
    current: JobProgress | None,
    incoming: JobProgress | None,
) -> JobProgress | None:
    """Return the progress to keep when a poll reports ``incoming``.

    Progress is not guaranteed to increase on the server side; a report for
    the same step with a lower ``current`` keeps the known value.
    """
    if incoming is None:
        return current
    if current is None:
        return incoming
    if incoming.step == current.step and incoming.current < current.current:
        return current
    return incoming


class FallbackPoller:
    """Periodic reconciliation of degraded jobs.

    ``start``/``request_stop`` are synchronous so a registry listener can
    drive them; ``stop`` additionally waits for the loop task to finish.
    """

    def __init__(
        self,
        registry: JobRegistry,
        client: ScraperClient,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_consecutive_failures: int = DEFAULT_MAX_POLL_FAILURES,
    ) -> None:
        self._registry = registry
        self._client = client
        self._interval = interval_seconds
        self._max_failures = max_consecutive_failures
        self._task: asyncio.Task[None] | None = None
        self._consecutive_failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def start(self) -> None:
        """Start the polling loop if it is not already running."""
        if self.is_running:
            return
        self._consecutive_failures = 0
        self._task = spawn_logged(
            self._loop(),
            _logger,
            name="fallback-poller",
            died_event="poller.loop_died_unexpectedly",
        )
        _logger.debug("poller.started", interval=self._interval)

    def request_stop(self) -> None:
        """Stop the loop without waiting. Safe to call from inside a tick."""
        task, self._task = self._task, None
        if task is None:
            return
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        _logger.debug("poller.stopped")

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        task = self._task
        self.request_stop()
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self._interval)
            if self._task is not me:
                break
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("poller.tick_crashed")

    # ─── Tick ─────────────────────────────────────────────────────────

    async def tick(self) -> bool:
        """Run one reconciliation pass.

        Returns True if the backend was contacted, False when no active job
        is degraded.
        """
        degraded = self._registry.degraded_ids()
        if not degraded:
            return False

        try:
            listing = await self._client.list_jobs()
        except (LeadsyncError, ValueError) as exc:
            self._record_failure(degraded, exc)
            return True

        if self._consecutive_failures:
            _logger.info("poller.recovered", after_failures=self._consecutive_failures)
        self._consecutive_failures = 0

        remote = {job.job_id: job for job in listing.jobs}
        for job_id in sorted(degraded):
            job = remote.get(job_id)
            if job is None:
                _logger.debug("poller.job_not_listed", job_id=job_id)
                continue
            await self._reconcile(job)
        return True

    async def _reconcile(self, job: JobStatusResponse) -> None:
        job_id = job.job_id
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            self._registry.clear_degraded(job_id)
            return

        if job.status is JobStatus.COMPLETED:
            try:
                leads = await self._client.get_job_leads(job_id)
            except (LeadsyncError, ValueError) as exc:
                _logger.warning(
                    "poller.leads_fetch_failed",
                    job_id=job_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            else:
                added = self._registry.merge_leads(job_id, leads)
                _logger.debug("poller.leads_merged", job_id=job_id, changed=added)

        # Re-read: the stream may have moved the job while leads were fetched
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            self._registry.clear_degraded(job_id)
            return

        patch: dict[str, Any] = {}
        if job.status is not record.status:
            patch["status"] = job.status
        progress = merge_progress(record.progress, job.progress)
        if progress != record.progress:
            patch["progress"] = progress
        if job.status.is_terminal and job.summary is not None:
            patch["summary"] = job.summary
        if job.status is JobStatus.FAILED and job.error:
            patch["error"] = job.error
        elif record.error == POLL_FAILURE_MESSAGE:
            patch["error"] = None

        if job.status.is_terminal:
            self._registry.clear_degraded(job_id)
        if patch and self._registry.upsert(job_id, **patch):
            _logger.debug(
                "poller.reconciled",
                job_id=job_id,
                fields=sorted(patch),
                status=job.status.value,
            )

    def _record_failure(self, degraded: set[str], exc: Exception) -> None:
        self._consecutive_failures += 1
        _logger.warning(
            "poller.tick_failed",
            consecutive_failures=self._consecutive_failures,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if self._consecutive_failures < self._max_failures:
            return
        if self._consecutive_failures == self._max_failures:
            _logger.error("poller.escalated", job_ids=sorted(degraded))
        for job_id in degraded:
            record = self._registry.get(job_id)
            if record is not None and record.error != POLL_FAILURE_MESSAGE:
                self._registry.upsert(job_id, error=POLL_FAILURE_MESSAGE)


__all__ = ["FallbackPoller", "merge_progress"]
