"""In-memory job registry for the leadsync client.

Single source of truth for every job the client currently knows about,
partitioned into *active* jobs (pending/running, keyed by id) and a bounded
most-recent-first list of *recent* (terminal) jobs.

Every mutation goes through a registry method and is total: an unknown job
id is a no-op, because stream and poll callbacks can outlive a job's
presence (e.g. after a dismiss). Terminal status is sticky; once a record is
completed, failed or cancelled, further patches for it are ignored until an
explicit ``reactivate`` (resume).

The client is single-threaded (asyncio) and every method here is
synchronous, so no locking is needed.
"""

from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from leadsync.api.types import (
    JobProgress,
    JobStatus,
    JobSummary,
    Lead,
    ScrapeRequest,
)
from leadsync.core.constants import DEFAULT_MAX_CONCURRENT_JOBS, DEFAULT_MAX_RECENT_JOBS
from leadsync.core.logging import get_logger
from leadsync.core.time import utc_now

_logger = get_logger("jobs.registry")

# Fields ``upsert`` may patch; job_id, query and request are immutable
_PATCHABLE_FIELDS = frozenset({"status", "progress", "leads", "summary", "error", "started_at"})

ChangeKind = Literal[
    "registered",
    "updated",
    "finished",
    "lead_added",
    "lead_updated",
    "dismissed",
    "reactivated",
]


@dataclass
class JobRecord:
    """A single job's client-side state.

    Records are replaced, not mutated, on every registry change, so a
    record obtained from ``get`` is a stable snapshot.
    """

    job_id: str
    query: str
    status: JobStatus = JobStatus.PENDING
    progress: JobProgress | None = None
    leads: list[Lead] = field(default_factory=list)
    summary: JobSummary | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    request: ScrapeRequest | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def lead_count(self) -> int:
        """Known lead count, falling back to the summary when leads were not loaded."""
        summary_total = self.summary.total_leads if self.summary else 0
        return max(len(self.leads), summary_total)

    @property
    def can_resume(self) -> bool:
        """Resume (same id) is offered for failed/cancelled jobs that have leads.

        Jobs without leads are retried under a new id instead.
        """
        return (
            self.status in (JobStatus.FAILED, JobStatus.CANCELLED)
            and self.lead_count > 0
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        result: dict[str, Any] = {
            "job_id": self.job_id,
            "query": self.query,
            "status": self.status.value,
            "lead_count": len(self.leads),
            "started_at": self.started_at.isoformat(),
        }
        if self.progress is not None:
            result["progress"] = self.progress.model_dump()
        if self.summary is not None:
            result["summary"] = self.summary.model_dump(exclude_none=True)
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class RegistryChange:
    """Notification sent to registry listeners after a mutation."""

    kind: ChangeKind
    job_id: str


RegistryListener = Callable[[RegistryChange], None]


def _dedupe_leads(leads: Iterable[Lead]) -> list[Lead]:
    """Collapse leads sharing an external id; later data wins, first position kept."""
    result: list[Lead] = []
    index: dict[str, int] = {}
    for lead in leads:
        key = lead.external_id
        if key is None:
            result.append(lead)
        elif key in index:
            result[index[key]] = lead
        else:
            index[key] = len(result)
            result.append(lead)
    return result


def _find_lead(leads: list[Lead], external_id: str) -> int | None:
    for i, existing in enumerate(leads):
        if existing.external_id == external_id:
            return i
    return None


class JobRegistry:
    """Active/recent job store with change notifications.

    Usage::

        registry = JobRegistry(max_concurrent_jobs=2, max_recent_jobs=5)
        registry.register(JobRecord(job_id="J1", query="coffee shops"))
        registry.upsert("J1", status=JobStatus.RUNNING)
        registry.append_lead("J1", lead)
        registry.upsert("J1", status=JobStatus.COMPLETED, summary=summary)
        registry.list_recent()[0].job_id  # "J1"
    """

    def __init__(
        self,
        *,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        max_recent_jobs: int = DEFAULT_MAX_RECENT_JOBS,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        if max_recent_jobs < 1:
            raise ValueError("max_recent_jobs must be at least 1")
        self._max_concurrent_jobs = max_concurrent_jobs
        self._max_recent_jobs = max_recent_jobs
        self._active: dict[str, JobRecord] = {}
        self._recent: list[JobRecord] = []
        self._degraded: set[str] = set()
        self._listeners: dict[str, RegistryListener] = {}

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def max_concurrent_jobs(self) -> int:
        return self._max_concurrent_jobs

    @property
    def max_recent_jobs(self) -> int:
        return self._max_recent_jobs

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def can_start_new_job(self) -> bool:
        return len(self._active) < self._max_concurrent_jobs

    def get(self, job_id: str) -> JobRecord | None:
        """Return the record for ``job_id`` from active or recent, or None."""
        record = self._active.get(job_id)
        if record is not None:
            return record
        for recent in self._recent:
            if recent.job_id == job_id:
                return recent
        return None

    def list_active(self) -> list[JobRecord]:
        """Active records in registration order."""
        return list(self._active.values())

    def list_recent(self) -> list[JobRecord]:
        """Terminal records, most recently finished first."""
        return list(self._recent)

    # ------------------------------------------------------------------
    # Record lifecycle
    # ------------------------------------------------------------------

    def register(self, record: JobRecord) -> None:
        """Add a newly known job.

        Non-terminal records become active; terminal records go to the front
        of the recent list. A stale recent copy with the same id is dropped.

        Raises:
            ValueError: the id is already active
        """
        if record.job_id in self._active:
            raise ValueError(f"Job already registered: {record.job_id}")
        record = dataclasses.replace(record, leads=_dedupe_leads(record.leads))
        if record.is_terminal:
            self._push_recent(record)
        else:
            self._remove_recent(record.job_id)
            self._active[record.job_id] = record
        _logger.debug("registry.registered", job_id=record.job_id, status=record.status.value)
        self._notify("registered", record.job_id)

    def seed_recent(self, records: Iterable[JobRecord]) -> None:
        """Replace the recent list with ``records`` (already most-recent-first).

        Used on initial load; non-terminal records are skipped.
        """
        seeded: list[JobRecord] = []
        for record in records:
            if not record.is_terminal or record.job_id in self._active:
                continue
            if any(r.job_id == record.job_id for r in seeded):
                continue
            seeded.append(record)
            if len(seeded) >= self._max_recent_jobs:
                break
        self._recent = seeded
        for record in seeded:
            self._notify("registered", record.job_id)

    def reactivate(self, job_id: str) -> JobRecord | None:
        """Move a terminal record back to active as ``pending`` (resume path).

        Accumulated leads are kept; error and summary are cleared. Returns
        the new active record, or None if ``job_id`` is not a recent job.
        """
        for i, recent in enumerate(self._recent):
            if recent.job_id == job_id:
                break
        else:
            return None
        del self._recent[i]
        record = dataclasses.replace(
            recent,
            status=JobStatus.PENDING,
            error=None,
            summary=None,
        )
        self._active[job_id] = record
        _logger.info("registry.reactivated", job_id=job_id, lead_count=len(record.leads))
        self._notify("reactivated", job_id)
        return record

    def upsert(self, job_id: str, **patch: Any) -> bool:
        """Merge ``patch`` into the active record for ``job_id``.

        Patchable fields: status, progress, leads, summary, error,
        started_at. A patched ``leads`` list replaces the current one
        (deduplicated). Status moves forward only: a ``pending`` patch never
        demotes a running job. A terminal status moves the record to the
        front of the recent list, evicting the oldest beyond capacity.

        Returns True if the record changed. Unknown ids and terminal records
        are left untouched.

        Raises:
            ValueError: ``patch`` names a field that cannot be patched
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch JobRecord fields: {sorted(unknown)}")

        current = self._active.get(job_id)
        if current is None:
            if self.get(job_id) is not None:
                _logger.debug("registry.ignored_terminal_update", job_id=job_id)
            return False

        if "status" in patch:
            status = JobStatus(patch["status"])
            if status is JobStatus.PENDING and current.status is JobStatus.RUNNING:
                status = JobStatus.RUNNING
            patch["status"] = status
        if "leads" in patch:
            patch["leads"] = _dedupe_leads(patch["leads"])

        updated = dataclasses.replace(current, **patch)
        if updated == current:
            return False

        if updated.is_terminal:
            del self._active[job_id]
            self._degraded.discard(job_id)
            self._push_recent(updated)
            _logger.info(
                "registry.job_finished",
                job_id=job_id,
                status=updated.status.value,
                lead_count=len(updated.leads),
            )
            self._notify("finished", job_id)
        else:
            self._active[job_id] = updated
            self._notify("updated", job_id)
        return True

    def dismiss(self, job_id: str) -> bool:
        """Remove a job from the recent list. Active jobs must be cancelled instead."""
        if job_id in self._active:
            _logger.debug("registry.dismiss_active_ignored", job_id=job_id)
            return False
        if not self._remove_recent(job_id):
            return False
        self._notify("dismissed", job_id)
        return True

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def append_lead(self, job_id: str, lead: Lead) -> bool:
        """Append ``lead`` unless one with the same external id is already present.

        The first copy of a duplicated ``lead`` event wins; enrichment comes
        through ``update_lead``.
        """
        current = self._active.get(job_id)
        if current is None:
            return False
        key = lead.external_id
        if key is not None and _find_lead(current.leads, key) is not None:
            _logger.debug("registry.duplicate_lead_ignored", job_id=job_id, place_id=key)
            return False
        self._active[job_id] = dataclasses.replace(current, leads=[*current.leads, lead])
        self._notify("lead_added", job_id)
        return True

    def update_lead(self, job_id: str, lead: Lead) -> bool:
        """Replace the lead with the same external id in place.

        Returns False (no-op) when the job is not active or no lead matches.
        """
        current = self._active.get(job_id)
        key = lead.external_id
        if current is None or key is None:
            return False
        position = _find_lead(current.leads, key)
        if position is None:
            return False
        leads = list(current.leads)
        leads[position] = lead
        self._active[job_id] = dataclasses.replace(current, leads=leads)
        self._notify("lead_updated", job_id)
        return True

    def merge_leads(self, job_id: str, leads: Iterable[Lead]) -> int:
        """Fold a server-authoritative lead list into an active job.

        Known external ids are replaced in place, new ones appended. Returns
        the number of leads added or replaced.
        """
        current = self._active.get(job_id)
        if current is None:
            return 0
        merged = list(current.leads)
        changed = 0
        for lead in leads:
            key = lead.external_id
            position = _find_lead(merged, key) if key is not None else None
            if position is None:
                merged.append(lead)
                changed += 1
            elif merged[position] != lead:
                merged[position] = lead
                changed += 1
        if changed:
            self._active[job_id] = dataclasses.replace(current, leads=merged)
            self._notify("updated", job_id)
        return changed

    # ------------------------------------------------------------------
    # Degraded-stream flags
    # ------------------------------------------------------------------

    def mark_degraded(self, job_id: str) -> bool:
        """Flag an active job whose stream closed for fallback polling."""
        if job_id not in self._active:
            return False
        self._degraded.add(job_id)
        return True

    def clear_degraded(self, job_id: str) -> None:
        self._degraded.discard(job_id)

    def is_degraded(self, job_id: str) -> bool:
        return job_id in self._degraded

    def degraded_ids(self) -> set[str]:
        """Ids of active jobs currently flagged degraded."""
        return {job_id for job_id in self._degraded if job_id in self._active}

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: RegistryListener) -> str:
        """Register a change listener; returns an id for ``unsubscribe``."""
        sub_id = str(uuid.uuid4())
        self._listeners[sub_id] = listener
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        return self._listeners.pop(sub_id, None) is not None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _push_recent(self, record: JobRecord) -> None:
        self._remove_recent(record.job_id)
        self._recent.insert(0, record)
        while len(self._recent) > self._max_recent_jobs:
            evicted = self._recent.pop()
            _logger.debug("registry.recent_evicted", job_id=evicted.job_id)

    def _remove_recent(self, job_id: str) -> bool:
        before = len(self._recent)
        self._recent = [r for r in self._recent if r.job_id != job_id]
        return len(self._recent) != before

    def _notify(self, kind: ChangeKind, job_id: str) -> None:
        change = RegistryChange(kind=kind, job_id=job_id)
        for sub_id, listener in list(self._listeners.items()):
            try:
                listener(change)
            except Exception:
                _logger.warning(
                    "registry.listener_error",
                    subscriber_id=sub_id,
                    change=kind,
                    job_id=job_id,
                    exc_info=True,
                )


__all__ = ["JobRecord", "JobRegistry", "RegistryChange", "RegistryListener"]
