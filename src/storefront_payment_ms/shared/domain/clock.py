"""Time helpers.

All timestamps are stored as naive UTC so they compare the same way in
PostgreSQL and SQLite.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
