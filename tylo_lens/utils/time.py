"""
Time helpers.

Wall-clock timestamps are timezone-aware UTC so they serialize as ISO-8601.
Durations use the monotonic clock so they never go backwards.
"""

import time
from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current wall-clock time (UTC)."""
    return datetime.now(timezone.utc)


def monotonic_ms() -> float:
    """Monotonic clock reading in milliseconds."""
    return time.perf_counter() * 1000.0


def duration_ms(start_ms: float, end_ms: float) -> float:
    """Elapsed milliseconds between two readings, floored at zero."""
    return max(0.0, end_ms - start_ms)
