"""Async HTTP client for the lead-scraper backend.

Provides ``ScraperClient`` with one typed method per backend operation
(submit, status, list, leads, cancel, resume, export, ...). Each method wraps
``_request`` which attaches the bearer credential, maps transport failures to
``ApiConnectionError`` and non-2xx responses to the ``ApiError`` family, and
parses the body into the Pydantic models from ``leadsync.api.types``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx

from leadsync.api.errors import response_to_exception
from leadsync.api.types import (
    CancelResponse,
    ExportFormat,
    JobCreatedResponse,
    JobListResponse,
    JobStatusResponse,
    Lead,
    ResumeResponse,
    ScrapeRequest,
)
from leadsync.core.config import ClientConfig
from leadsync.core.logging import get_logger
from leadsync.exceptions import ApiConnectionError

_logger = get_logger("api.client")

TokenProvider = Callable[[], Awaitable[str | None]]


def static_token(token: str | None) -> TokenProvider:
    """Wrap a fixed credential (or None) as a ``TokenProvider``."""

    async def _provide() -> str | None:
        return token

    return _provide


class ScraperClient:
    """Async client for the lead-scraper REST API.

    Parameters
    ----------
    base_url:
        Backend root, e.g. ``http://localhost:8000``.
    token_provider:
        Coroutine function returning the current bearer token, or None
        when the user is not signed in. Called per request so refreshed
        credentials are picked up.
    timeout:
        Seconds to wait for a non-streaming response.
    transport:
        Optional httpx transport, used by tests to fake the backend.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: TokenProvider | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider or static_token(None)
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ScraperClient:
        """Build a client from ``ClientConfig``.

        An explicit ``token_provider`` wins over ``config.api_token``.
        """
        return cls(
            config.api_url,
            token_provider=token_provider or static_token(config.api_token),
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def get_auth_token(self) -> str | None:
        """Return the current credential; provider failures count as signed out."""
        try:
            return await self._token_provider()
        except Exception:
            _logger.warning("client.token_provider_failed", exc_info=True)
            return None

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ScraperClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one request and return the 2xx response.

        Raises:
            ApiConnectionError: the backend could not be reached
            ApiError (subclass): the backend returned a non-2xx status
        """
        headers: dict[str, str] = {}
        token = await self.get_auth_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TransportError as exc:
            raise ApiConnectionError(
                f"Cannot reach backend at {self._base_url}: {exc}"
            ) from exc

        if response.is_error:
            error = response_to_exception(response)
            _logger.debug(
                "client.request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                error_kind=error.kind,
            )
            raise error
        return response

    # ------------------------------------------------------------------
    # Job operations
    # ------------------------------------------------------------------

    async def submit_job(self, request: ScrapeRequest) -> JobCreatedResponse:
        """Submit a new scrape job."""
        response = await self._request("POST", "/api/scrape", json=request.to_payload())
        return JobCreatedResponse.model_validate(response.json())

    async def get_job_status(self, job_id: str) -> JobStatusResponse:
        response = await self._request("GET", f"/api/jobs/{job_id}")
        return JobStatusResponse.model_validate(response.json())

    async def list_jobs(self) -> JobListResponse:
        """List all jobs of the current user."""
        response = await self._request("GET", "/api/jobs")
        return JobListResponse.model_validate(response.json())

    async def get_job_leads(self, job_id: str) -> list[Lead]:
        response = await self._request("GET", f"/api/jobs/{job_id}/leads")
        return [Lead.model_validate(item) for item in response.json()]

    async def cancel_job(self, job_id: str) -> CancelResponse:
        """Ask the backend to stop a job. Already-finished jobs raise ``ApiError``."""
        response = await self._request("DELETE", f"/api/jobs/{job_id}")
        return CancelResponse.model_validate(response.json())

    async def resume_job(self, job_id: str) -> ResumeResponse:
        """Continue a failed/cancelled job under the same id."""
        response = await self._request("POST", f"/api/jobs/{job_id}/resume")
        return ResumeResponse.model_validate(response.json())

    async def delete_job(self, job_id: str) -> CancelResponse:
        """Permanently delete a job and its leads."""
        response = await self._request("DELETE", f"/api/jobs/{job_id}/delete")
        return CancelResponse.model_validate(response.json())

    async def export_leads(
        self,
        job_id: str | None,
        fmt: ExportFormat = "csv",
    ) -> bytes:
        """Download leads of one job, or of all jobs when ``job_id`` is None."""
        path = "/api/jobs/export/bulk" if job_id is None else f"/api/jobs/{job_id}/export"
        response = await self._request("GET", path, params={"format": fmt})
        return response.content

    async def health_check(self) -> dict[str, Any]:
        response = await self._request("GET", "/api/health")
        return dict(response.json())

    async def get_stream_url(self, job_id: str) -> str:
        """Return the server-push URL for ``job_id``.

        The credential travels as a ``token`` query parameter because the
        event channel cannot carry an Authorization header. Never log it.
        """
        url = f"{self._base_url}/api/jobs/{job_id}/stream"
        token = await self.get_auth_token()
        if token:
            return f"{url}?token={quote(token, safe='')}"
        return url


__all__ = ["ScraperClient", "TokenProvider", "static_token"]
