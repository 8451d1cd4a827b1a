"""Wall clock. Naive UTC, matching what MongoDB hands back for stored datetimes."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
