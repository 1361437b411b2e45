"""Exception hierarchy for leadsync.

All leadsync-specific exceptions inherit from LeadsyncError, enabling callers
to catch broad (LeadsyncError) or narrow (e.g., RateLimitedError). Only
command-level failures (submit, cancel, resume, export) reach callers;
stream and poll failures are handled inside the job-state core.
"""

from __future__ import annotations

from typing import Literal

ApiErrorKind = Literal["rate_limit", "banned", "unauthorized", "generic"]


class LeadsyncError(Exception):
    """Base exception for all leadsync errors."""


class ApiError(LeadsyncError):
    """Raised when the backend answers with a non-2xx status.

    Attributes:
        status_code: HTTP status of the response.
        retry_after: Seconds from the ``Retry-After`` header, if present.
        kind: Coarse category used for user-facing messages.
    """

    kind: ApiErrorKind = "generic"

    def __init__(
        self,
        message: str,
        status_code: int,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.kind == "rate_limit"

    @property
    def is_banned(self) -> bool:
        return self.kind == "banned"

    @property
    def is_unauthorized(self) -> bool:
        return self.kind == "unauthorized"


class RateLimitedError(ApiError):
    """Too many requests; retryable after ``retry_after`` seconds."""

    kind: ApiErrorKind = "rate_limit"


class AccountRestrictedError(ApiError):
    """The account is temporarily restricted; must wait for a cooldown."""

    kind: ApiErrorKind = "banned"


class UnauthorizedError(ApiError):
    """Missing or expired credentials."""

    kind: ApiErrorKind = "unauthorized"


class ApiConnectionError(LeadsyncError):
    """Raised when the backend cannot be reached at all."""


class CapacityExceededError(LeadsyncError):
    """Raised when starting a job would exceed the concurrent-job cap.

    Detected locally; no request is sent to the backend.
    """


class JobNotFoundError(LeadsyncError):
    """Raised when a command targets a job id the client does not know."""


class JobNotResumableError(LeadsyncError):
    """Raised when resume is requested for a job that must be retried instead.

    Only failed or cancelled jobs with at least one lead can be resumed.
    """


__all__ = [
    "AccountRestrictedError",
    "ApiConnectionError",
    "ApiError",
    "ApiErrorKind",
    "CapacityExceededError",
    "JobNotFoundError",
    "JobNotResumableError",
    "LeadsyncError",
    "RateLimitedError",
    "UnauthorizedError",
]
