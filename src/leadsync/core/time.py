"""Time utilities for leadsync.

Provides timezone-aware datetime helpers for client-observed times and
backend timestamps.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def parse_api_datetime(value: str | None) -> datetime:
    """Parse a backend timestamp into an aware datetime.

    The backend emits naive ISO strings that are UTC by convention. Strings
    without an offset are treated as UTC; a missing or unparseable value
    falls back to the current time.
    """
    if not value:
        return utc_now()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
