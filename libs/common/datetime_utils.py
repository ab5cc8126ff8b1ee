"""Datetime helpers. All persisted timestamps are timezone-aware UTC.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def from_unix_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a processor epoch timestamp (seconds) to aware UTC."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
