"""Global constants for leadsync.

Centralizes magic numbers and wire names used throughout the codebase,
making them discoverable, consistent, and easy to modify.
"""

# =============================================================================
# Backend
# =============================================================================

DEFAULT_API_URL = "http://localhost:8000"
"""Backend base URL used when neither config nor environment sets one."""

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
"""Timeout for non-streaming HTTP requests."""

# =============================================================================
# Job limits
# =============================================================================

DEFAULT_MAX_CONCURRENT_JOBS = 1
"""Active (pending/running) jobs a user may have at once."""

DEFAULT_MAX_RECENT_JOBS = 5
"""Capacity of the most-recent-first list of finished jobs."""

# =============================================================================
# Fallback polling
# =============================================================================

DEFAULT_POLL_INTERVAL_SECONDS = 10.0
"""Interval between fallback poll ticks while a job is active."""

DEFAULT_MAX_POLL_FAILURES = 3
"""Consecutive failed poll ticks before degraded jobs get a visible error."""

# =============================================================================
# Streaming
# =============================================================================

DEFAULT_RECONNECT_ATTEMPTS = 3
"""Transport-level reconnect attempts after a transient stream drop."""

DEFAULT_RECONNECT_DELAY_SECONDS = 2.0
"""Delay before the first reconnect attempt."""

MAX_RECONNECT_DELAY_SECONDS = 30.0
"""Upper bound on the reconnect delay when backoff is applied."""

STREAM_EVENT_TYPES = ("status", "lead", "lead_update", "error", "complete")
"""Named server-sent events the stream manager acts on."""

PLACEHOLDER_PAYLOADS = frozenset({
    "",
    "undefined",
    "null",
    "none",
    "nan",
    "[object object]",
})
"""Literal payload texts that stand in for missing data (compared lowercased)."""

# =============================================================================
# Error display
# =============================================================================

DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60
"""Countdown shown for a rate-limit error without a Retry-After header."""

POLL_FAILURE_MESSAGE = "Lost connection to the server, still retrying"
"""Error text attached to degraded jobs once polling keeps failing."""
