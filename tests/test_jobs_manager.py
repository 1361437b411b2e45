"""Tests for leadsync.jobs.manager.

Exercises the command surface end to end against a fake backend (httpx
MockTransport) and an in-memory stream transport: submission, capacity
enforcement, idempotent cancel, resume vs retry, initial load, poller
lifecycle and teardown.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from leadsync.api.client import ScraperClient, static_token
from leadsync.api.types import JobStatus, ScrapeRequest
from leadsync.core.config import ClientConfig
from leadsync.exceptions import (
    AccountRestrictedError,
    ApiError,
    CapacityExceededError,
    JobNotFoundError,
    JobNotResumableError,
    LeadsyncError,
    RateLimitedError,
)
from leadsync.jobs.manager import JobsManager, record_from_status
from leadsync.jobs.registry import JobRegistry
from leadsync.api.types import JobStatusResponse
from tests.helpers import FakeBackend, FakeTransport, job_json, lead_payload


def _make_manager(
    client: ScraperClient,
    transport: FakeTransport,
    max_concurrent_jobs: int = 1,
) -> JobsManager:
    registry = JobRegistry(max_concurrent_jobs=max_concurrent_jobs, max_recent_jobs=5)
    return JobsManager(client, transport, registry=registry, poll_interval_seconds=30)


def _request(query: str = "coffee shops in Jakarta") -> ScrapeRequest:
    return ScrapeRequest(query=query, max_results=20)


# ─── start_job ────────────────────────────────────────────────────────


class TestStartJob:
    """Submission, registration and capacity."""

    @pytest.mark.asyncio
    async def test_submit_registers_pending_job_and_opens_stream(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            job_id = await manager.start_job(_request())

            assert job_id == "J1"
            active = manager.active_jobs
            assert len(active) == 1
            assert active[0].job_id == "J1"
            assert active[0].status is JobStatus.PENDING
            assert active[0].query == "coffee shops in Jakarta"
            assert active[0].request == _request()
            assert fake_transport.latest("J1").url.endswith("/api/jobs/J1/stream?token=tok-123")
            assert backend.calls("POST", "/api/scrape") == 1

    @pytest.mark.asyncio
    async def test_capacity_rejected_locally(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            await manager.start_job(_request())
            assert not manager.can_start_new_job

            with pytest.raises(CapacityExceededError):
                await manager.start_job(_request("tea houses"))

            assert backend.calls("POST", "/api/scrape") == 1
            assert [r.job_id for r in manager.active_jobs] == ["J1"]

    @pytest.mark.asyncio
    async def test_in_flight_submission_counts_against_capacity(
        self, backend: FakeBackend, fake_transport: FakeTransport
    ):
        release = asyncio.Event()

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/scrape":
                await release.wait()
            return backend.handler(request)

        client = ScraperClient(
            "http://scraper.test",
            token_provider=static_token("tok"),
            transport=httpx.MockTransport(slow_handler),
        )
        async with _make_manager(client, fake_transport) as manager:
            first = asyncio.create_task(manager.start_job(_request()))
            await asyncio.sleep(0)
            for _ in range(10):
                if manager.is_starting:
                    break
                await asyncio.sleep(0)
            assert manager.is_starting
            with pytest.raises(CapacityExceededError):
                await manager.start_job(_request("second"))
            release.set()
            assert await first == "J1"
            assert not manager.is_starting
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "headers", "error_cls"),
        [
            (429, {"Retry-After": "120"}, RateLimitedError),
            (403, {}, AccountRestrictedError),
            (422, {}, ApiError),
        ],
    )
    async def test_submission_rejection_leaves_registry_untouched(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport,
        status, headers, error_cls,
    ):
        backend.overrides[("POST", "/api/scrape")] = httpx.Response(
            status, headers=headers, json={"detail": "nope"}
        )
        async with _make_manager(api_client, fake_transport) as manager:
            with pytest.raises(error_cls) as exc_info:
                await manager.start_job(_request())
            assert manager.active_jobs == []
            assert manager.recent_jobs == []
            assert fake_transport.channels == []
            assert not manager.is_starting
        if status == 429:
            assert exc_info.value.retry_after == 120


# ─── cancel_job ───────────────────────────────────────────────────────


class TestCancelJob:
    """Optimistic, idempotent cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_is_optimistic_and_closes_channel(
        self, api_client, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            await manager.start_job(_request())
            channel = fake_transport.latest("J1")

            await manager.cancel_job("J1")

            assert manager.active_jobs == []
            assert manager.recent_jobs[0].status is JobStatus.CANCELLED
            assert channel.closed

            # a stray late event cannot overturn the cancel
            channel.listener.on_event("complete", '{"summary": {"total_leads": 9}}')
            assert manager.get("J1").status is JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_twice_is_idempotent(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            await manager.start_job(_request())
            await manager.cancel_job("J1")
            await manager.cancel_job("J1")  # server: "Job is already cancelled"
            assert manager.get("J1").status is JobStatus.CANCELLED
            assert backend.calls("DELETE", "/api/jobs/J1") == 2

    @pytest.mark.asyncio
    async def test_cancel_unknown_job_on_server_is_success(
        self, api_client, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            await manager.cancel_job("gone")  # 404 from the backend

    @pytest.mark.asyncio
    async def test_other_cancel_errors_propagate(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            await manager.start_job(_request())
            backend.overrides[("DELETE", "/api/jobs/J1")] = httpx.Response(
                500, json={"detail": "database unavailable"}
            )
            with pytest.raises(ApiError, match="database unavailable"):
                await manager.cancel_job("J1")
            assert manager.get("J1").status is JobStatus.PENDING


# ─── resume / retry / dismiss ─────────────────────────────────────────


class TestResumeRetry:
    """Resume keeps the id; retry submits a new job."""

    async def _failed_job(self, manager: JobsManager, fake_transport: FakeTransport, leads: int) -> str:
        job_id = await manager.start_job(_request())
        channel = fake_transport.latest(job_id)
        for i in range(leads):
            channel.emit("lead", lead_payload(f"P{i}"))
        channel.emit("error", {"type": "error", "message": "Scraper crashed", "recoverable": False})
        return job_id

    @pytest.mark.asyncio
    async def test_resume_reuses_id_and_keeps_leads(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            job_id = await self._failed_job(manager, fake_transport, leads=2)
            assert manager.get(job_id).can_resume

            await manager.resume_job(job_id)

            record = manager.get(job_id)
            assert record.status is JobStatus.PENDING
            assert len(record.leads) == 2
            assert record.error is None
            assert manager.recent_jobs == []
            assert backend.calls("POST", f"/api/jobs/{job_id}/resume") == 1

            channel = fake_transport.latest(job_id)
            assert not channel.closed
            channel.emit("lead", lead_payload("P1"))  # duplicate of a kept lead
            channel.emit("lead", lead_payload("P9"))
            assert len(manager.get(job_id).leads) == 3

    @pytest.mark.asyncio
    async def test_resume_without_leads_is_refused(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            job_id = await self._failed_job(manager, fake_transport, leads=0)
            with pytest.raises(JobNotResumableError):
                await manager.resume_job(job_id)
            assert backend.calls("POST", f"/api/jobs/{job_id}/resume") == 0

    @pytest.mark.asyncio
    async def test_resume_unknown_job(self, api_client, fake_transport: FakeTransport):
        async with _make_manager(api_client, fake_transport) as manager:
            with pytest.raises(JobNotFoundError):
                await manager.resume_job("J404")

    @pytest.mark.asyncio
    async def test_retry_submits_new_job_with_same_parameters(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            job_id = await self._failed_job(manager, fake_transport, leads=0)
            new_id = await manager.resume_or_retry(job_id)
            assert new_id != job_id
            assert manager.get(new_id).request == manager.get(job_id).request
            assert manager.get(job_id).status is JobStatus.FAILED
            assert backend.calls("POST", "/api/scrape") == 2

    @pytest.mark.asyncio
    async def test_resume_or_retry_prefers_resume(
        self, api_client, fake_transport: FakeTransport
    ):
        async with _make_manager(api_client, fake_transport) as manager:
            job_id = await self._failed_job(manager, fake_transport, leads=1)
            assert await manager.resume_or_retry(job_id) == job_id

    @pytest.mark.asyncio
    async def test_retry_of_unknown_job_uses_server_parameters(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        backend.add_job("OLD", "failed", query="bakeries in Bandung", max_results=15)
        async with _make_manager(api_client, fake_transport) as manager:
            new_id = await manager.retry_job("OLD")
            record = manager.get(new_id)
            assert record.query == "bakeries in Bandung"
            assert record.request.max_results == 15

    @pytest.mark.asyncio
    async def test_dismiss_is_local(self, api_client, backend: FakeBackend, fake_transport: FakeTransport):
        async with _make_manager(api_client, fake_transport) as manager:
            job_id = await self._failed_job(manager, fake_transport, leads=0)
            before = len(backend.requests)
            assert manager.dismiss_job(job_id)
            assert manager.get(job_id) is None
            assert len(backend.requests) == before


# ─── load_existing / track_job ────────────────────────────────────────


class TestInitialLoad:
    """Populating the registry from the server."""

    @pytest.mark.asyncio
    async def test_loads_active_and_recent(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        backend.add_job("A1", "running", leads=[{"place_id": "P1", "name": "A"}])
        backend.add_job("D1", "completed", completed_at="2026-10-18T10:00:00")
        backend.add_job("D2", "failed", completed_at="2026-10-19T10:00:00")
        async with _make_manager(api_client, fake_transport, max_concurrent_jobs=2) as manager:
            await manager.load_existing()

            assert [r.job_id for r in manager.active_jobs] == ["A1"]
            assert len(manager.get("A1").leads) == 1
            assert [r.job_id for r in manager.recent_jobs] == ["D2", "D1"]
            assert manager.get("D1").leads == []
            assert fake_transport.open_for("A1")

    @pytest.mark.asyncio
    async def test_skipped_without_token(self, backend: FakeBackend, fake_transport: FakeTransport):
        backend.add_job("A1", "running")
        client = ScraperClient("http://scraper.test", transport=backend.transport())
        async with _make_manager(client, fake_transport) as manager:
            await manager.load_existing()
            assert manager.active_jobs == []
            assert backend.requests == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_leads_failure_tolerated(
        self, api_client, backend: FakeBackend, fake_transport: FakeTransport
    ):
        backend.add_job("A1", "running")
        backend.overrides[("GET", "/api/jobs/A1/leads")] = httpx.Response(500)
        async with _make_manager(api_client, fake_transport) as manager:
            await manager.load_existing()
            assert manager.get("A1").leads == []

    @pytest.mark.asyncio
    async def test_track_terminal_job(self, api_client, backend: FakeBackend, fake_transport: FakeTransport):
        backend.add_job("OLD", "cancelled", summary={"total_leads": 4})
        async with _make_manager(api_client, fake_transport) as manager:
            record = await manager.track_job("OLD")
            assert record.status is JobStatus.CANCELLED
            assert record.can_resume
            assert manager.recent_jobs[0].job_id == "OLD"
            assert fake_transport.channels == []

    def test_record_from_status_treats_naive_time_as_utc(self):
        status = JobStatusResponse.model_validate(
            job_json("J1", "running", started_at="2026-10-19T08:30:00")
        )
        record = record_from_status(status)
        assert record.started_at.tzinfo is not None
        assert record.started_at.hour == 8
        assert record.request.query == "coffee shops"


# ─── Poller wiring / teardown ─────────────────────────────────────────


class TestLifecycle:
    """Poller runs only while jobs are active; teardown releases everything."""

    @pytest.mark.asyncio
    async def test_poller_follows_active_jobs(self, api_client, fake_transport: FakeTransport):
        async with _make_manager(api_client, fake_transport) as manager:
            assert not manager.poller.is_running
            await manager.start_job(_request())
            assert manager.poller.is_running
            await manager.cancel_job("J1")
            assert not manager.poller.is_running

    @pytest.mark.asyncio
    async def test_teardown_closes_channels_and_stops_poller(
        self, api_client, fake_transport: FakeTransport
    ):
        manager = _make_manager(api_client, fake_transport, max_concurrent_jobs=2)
        await manager.start_job(_request())
        await manager.start_job(_request("tea"))
        channels = list(fake_transport.channels)

        await manager.teardown()
        await manager.teardown()

        assert all(c.closed for c in channels)
        assert not manager.poller.is_running
        assert manager.streams.open_job_ids == set()
        assert not fake_transport.closed  # not owned
        with pytest.raises(Exception, match="torn down"):
            await manager.start_job(_request())

    @pytest.mark.asyncio
    async def test_teardown_during_submission_opens_nothing(
        self, backend: FakeBackend, fake_transport: FakeTransport
    ):
        release = asyncio.Event()

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/scrape":
                await release.wait()
            return backend.handler(request)

        client = ScraperClient(
            "http://scraper.test",
            token_provider=static_token("tok"),
            transport=httpx.MockTransport(slow_handler),
        )
        manager = _make_manager(client, fake_transport)
        pending = asyncio.create_task(manager.start_job(_request()))
        for _ in range(10):
            if manager.is_starting:
                break
            await asyncio.sleep(0)
        assert manager.is_starting

        await manager.teardown()
        release.set()
        with pytest.raises(LeadsyncError, match="torn down"):
            await pending

        assert fake_transport.open_for("J1") == []
        assert manager.active_jobs == []
        assert not manager.poller.is_running
        await client.aclose()

    @pytest.mark.asyncio
    async def test_independent_instances(self, backend: FakeBackend):
        transport_a, transport_b = FakeTransport(), FakeTransport()
        client = ScraperClient(
            "http://scraper.test",
            token_provider=static_token("t"),
            transport=backend.transport(),
        )
        a = _make_manager(client, transport_a)
        b = _make_manager(client, transport_b)
        await a.start_job(_request())
        assert b.active_jobs == []
        await a.teardown()
        await b.teardown()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_from_config_owns_resources(self, backend: FakeBackend):
        config = ClientConfig(api_url="http://scraper.test/", max_concurrent_jobs=3)
        manager = JobsManager.from_config(config, http_transport=backend.transport())
        assert manager.registry.max_concurrent_jobs == 3
        assert manager.client.base_url == "http://scraper.test"
        assert await manager.client.health_check() == {"status": "healthy"}
        await manager.teardown()
