"""Shared test helpers for leadsync tests."""

from __future__ import annotations

import json
from typing import Any

import httpx

from leadsync.api.types import JobSummary, Lead


def make_lead(place_id: str | None = "P1", name: str = "Kopi Kenangan", **fields: Any) -> Lead:
    return Lead(place_id=place_id, name=name, **fields)


def lead_payload(place_id: str = "P1", name: str = "Kopi Kenangan", **fields: Any) -> dict[str, Any]:
    """Wire shape of a ``lead``/``lead_update`` event payload."""
    return {"type": "lead", "data": {"place_id": place_id, "name": name, **fields}}


def make_summary(total: int = 5, hot: int = 1, warm: int = 2, cold: int = 2) -> JobSummary:
    return JobSummary(total_leads=total, hot=hot, warm=warm, cold=cold)


def job_json(job_id: str, status: str = "running", query: str = "coffee shops", **fields: Any) -> dict[str, Any]:
    """Server JSON for one job (list/status endpoints)."""
    return {
        "job_id": job_id,
        "status": status,
        "query": query,
        "created_at": "2026-10-19T08:00:00",
        **fields,
    }


def sse_frame(event: str, data: str, id: str | None = None) -> str:
    """Render one event as ``text/event-stream`` text, as the backend sends it."""
    lines = []
    if id is not None:
        lines.append(f"id: {id}")
    lines.append(f"event: {event}")
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return "\n".join(lines) + "\n\n"


# ─── In-memory stream transport ───────────────────────────────────────


class FakeChannel:
    """Channel driven by the test through ``emit``/``connect``/``drop``."""

    def __init__(self, url: str, listener: Any) -> None:
        self.url = url
        self.listener = listener
        self.closed = False
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def connect(self) -> None:
        self.listener.on_open()

    def emit(self, event: str, payload: Any) -> None:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        self.listener.on_event(event, data)

    def drop(self) -> None:
        """Permanent remote close."""
        self.closed = True
        self.listener.on_close()


class FakeTransport:
    """``Transport`` that records every channel it opens."""

    def __init__(self) -> None:
        self.channels: list[FakeChannel] = []
        self.fail_with: Exception | None = None
        self.closed = False

    async def open(self, url: str, listener: Any) -> FakeChannel:
        if self.fail_with is not None:
            raise self.fail_with
        channel = FakeChannel(url, listener)
        self.channels.append(channel)
        return channel

    async def aclose(self) -> None:
        self.closed = True

    def latest(self, job_id: str) -> FakeChannel:
        """Most recently opened channel for ``job_id``."""
        for channel in reversed(self.channels):
            if f"/api/jobs/{job_id}/stream" in channel.url:
                return channel
        raise AssertionError(f"no channel opened for {job_id}")

    def open_for(self, job_id: str) -> list[FakeChannel]:
        return [
            c for c in self.channels
            if f"/api/jobs/{job_id}/stream" in c.url and not c.closed
        ]


# ─── Fake backend over httpx.MockTransport ────────────────────────────


class FakeBackend:
    """Minimal in-memory lead-scraper backend for ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.leads: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.overrides: dict[tuple[str, str], httpx.Response] = {}
        self.export_body = b"name,score\nKopi,80\n"
        self._next_id = 1

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> int:
        return sum(
            1 for r in self.requests if r.method == method and r.url.path == path
        )

    def add_job(self, job_id: str, status: str = "running", leads: list[dict[str, Any]] | None = None, **fields: Any) -> None:
        self.jobs[job_id] = job_json(job_id, status, **fields)
        self.leads[job_id] = list(leads or [])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        override = self.overrides.get((method, path))
        if override is not None:
            return override

        parts = path.strip("/").split("/")
        if (method, path) == ("POST", "/api/scrape"):
            body = json.loads(request.content)
            job_id = f"J{self._next_id}"
            self._next_id += 1
            self.add_job(job_id, "pending", query=body["query"])
            return httpx.Response(200, json={"job_id": job_id, "status": "pending"})
        if (method, path) == ("GET", "/api/health"):
            return httpx.Response(200, json={"status": "healthy"})
        if (method, path) == ("GET", "/api/jobs"):
            jobs = list(self.jobs.values())
            return httpx.Response(200, json={"jobs": jobs, "total": len(jobs)})
        if (method, path) == ("GET", "/api/jobs/export/bulk"):
            return httpx.Response(200, content=self.export_body)

        job_id = parts[2] if len(parts) > 2 else ""
        job = self.jobs.get(job_id)
        if job is None:
            return httpx.Response(404, json={"detail": "Job not found"})
        tail = parts[3] if len(parts) > 3 else None

        if method == "GET" and tail is None:
            return httpx.Response(200, json=job)
        if method == "GET" and tail == "leads":
            return httpx.Response(200, json=self.leads[job_id])
        if method == "GET" and tail == "export":
            return httpx.Response(200, content=self.export_body)
        if method == "DELETE" and tail is None:
            if job["status"] in ("completed", "failed", "cancelled"):
                return httpx.Response(400, json={"detail": f"Job is already {job['status']}"})
            job["status"] = "cancelled"
            return httpx.Response(200, json={"message": "Job cancelled", "status": "cancelled"})
        if method == "POST" and tail == "resume":
            job["status"] = "running"
            return httpx.Response(
                200,
                json={
                    "message": "Job resumed",
                    "status": "running",
                    "skip_leads": len(self.leads[job_id]),
                },
            )
        return httpx.Response(405, json={"detail": "Method not allowed"})
