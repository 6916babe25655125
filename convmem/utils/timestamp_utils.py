"""
Timestamp utilities for consistent time handling across the system.

Message timestamps are stored as float epoch seconds (UTC).
"""

import threading
import time
from datetime import datetime, timezone
from typing import Optional

_clock_lock = threading.Lock()
_last_timestamp = 0.0

# Smallest step that survives a round-trip through a JSON float
_MIN_STEP = 1e-6


def next_timestamp() -> float:
    """Return the current epoch time, strictly greater than any value previously returned.

    Two messages written in the same process never share a timestamp, even when
    the wall clock has not advanced or has stepped backwards.
    """
    global _last_timestamp
    with _clock_lock:
        now = time.time()
        if now <= _last_timestamp:
            now = _last_timestamp + _MIN_STEP
        _last_timestamp = now
        return now


def days_ago(days: int, now: Optional[float] = None) -> float:
    """Epoch seconds for the instant `days` days before `now`."""
    if now is None:
        now = time.time()
    return now - days * 24 * 3600


def to_datetime(timestamp: Optional[float] = None) -> datetime:
    """Convert timestamp to an aware UTC datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(float(timestamp), tz=timezone.utc)
