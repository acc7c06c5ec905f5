"""Wall-clock timing utilities for pipeline stages."""

import time
from typing import Optional


class TimingContext:
    """Context manager that records wall-clock duration into a dict.

    Usage:
        timings = {}
        with TimingContext(timings, "transpile"):
            do_work()
        # timings["transpile"] == 0.214
    """

    def __init__(self, timings: dict[str, float], key: str) -> None:
        self.timings = timings
        self.key = key
        self._start: Optional[float] = None

    def __enter__(self) -> "TimingContext":
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._start is not None:
            self.timings[self.key] = round(time.monotonic() - self._start, 3)
        return None  # Don't suppress exceptions


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration.

    Examples:
        0.0042 -> "4.2ms"
        0.5 -> "0.5s"
        65.3 -> "1m 5.3s"
    """
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"

    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining = seconds % 60
    return f"{minutes}m {remaining:.1f}s"


def timing_summary(timings: dict[str, float]) -> str:
    """Format a timings dict as a summary string.

    Example output:
        transpile: 0.2s | inject: 3.1ms | total: 0.2s
    """
    if not timings:
        return "(no timing data)"

    parts = [f"{k}: {format_duration(v)}" for k, v in timings.items()]
    total = sum(timings.values())
    parts.append(f"total: {format_duration(total)}")
    return " | ".join(parts)
