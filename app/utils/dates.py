"""
Datetime normalization.

All timestamps are stored as naive UTC (datetime.utcnow() style). Client
supplied values may carry an offset; they are converted before comparison
with stored values.
"""
from datetime import datetime, timezone
from typing import Optional


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
