"""HTTP error mapping for the lead-scraper backend.

Maps HTTP status codes to the leadsync exception hierarchy and extracts the
backend's ``detail`` message and ``Retry-After`` hint from error responses.
"""

from __future__ import annotations

import httpx

from leadsync.exceptions import (
    AccountRestrictedError,
    ApiError,
    RateLimitedError,
    UnauthorizedError,
)

# ---------------------------------------------------------------------------
# Status codes with special meaning
# ---------------------------------------------------------------------------

UNAUTHORIZED = 401
FORBIDDEN = 403
NOT_FOUND = 404
CONFLICT = 409
TOO_MANY_REQUESTS = 429

_STATUS_EXCEPTION_MAP: dict[int, type[ApiError]] = {
    UNAUTHORIZED: UnauthorizedError,
    FORBIDDEN: AccountRestrictedError,
    TOO_MANY_REQUESTS: RateLimitedError,
}

# Cancel responses that mean "nothing left to cancel"
_ALREADY_FINISHED_STATUSES = frozenset({NOT_FOUND, CONFLICT})
_ALREADY_FINISHED_MARKERS = ("already", "not running", "finished", "completed", "cancelled")


def _parse_retry_after(value: str | None) -> int | None:
    """Parse a delta-seconds ``Retry-After`` header; HTTP-dates are ignored."""
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return max(seconds, 0)


def _extract_detail(response: httpx.Response) -> str:
    """Return the backend's error message for ``response``."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        if detail:
            # FastAPI validation errors arrive as a list of dicts
            return str(detail)
    return response.reason_phrase or f"API Error: {response.status_code}"


def response_to_exception(response: httpx.Response) -> ApiError:
    """Convert a non-2xx response into the appropriate ``ApiError``."""
    exc_cls = _STATUS_EXCEPTION_MAP.get(response.status_code, ApiError)
    return exc_cls(
        _extract_detail(response),
        response.status_code,
        _parse_retry_after(response.headers.get("Retry-After")),
    )


def is_already_finished(exc: ApiError) -> bool:
    """True when a cancel error only says the job is no longer running."""
    if exc.status_code in _ALREADY_FINISHED_STATUSES:
        return True
    if exc.status_code == 400:
        message = exc.message.lower()
        return any(marker in message for marker in _ALREADY_FINISHED_MARKERS)
    return False


__all__ = [
    "CONFLICT",
    "FORBIDDEN",
    "NOT_FOUND",
    "TOO_MANY_REQUESTS",
    "UNAUTHORIZED",
    "is_already_finished",
    "response_to_exception",
]
