from datetime import datetime, timezone

# 2 ** 32 times any sane interval is already far past MAX_INTERVAL_MS.
MAX_BACKOFF_EXPONENT = 32


def make_session_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every session calls this once in __init__.
    Keys: updates_received, empty_responses, failures,
          last_success_at, started_at.
    """
    return {
        "updates_received": 0,
        "empty_responses": 0,
        "failures": 0,
        "last_success_at": None,
        "started_at": datetime.now(timezone.utc).isoformat(),
    }


def clamp_interval(interval_ms: float, min_ms: int, max_ms: int) -> int:
    return int(max(min_ms, min(max_ms, interval_ms)))


def next_interval(
    current_ms: int,
    recommended_ms: float | None,
    min_ms: int,
    max_ms: int,
    adaptive: bool = True,
) -> int:
    """
    Steady-state cadence after a successful poll.

    A server hint is adopted only when it already lies within the bounds.
    Out-of-range hints are ignored and the session keeps its current
    (clamped) interval.
    """
    if adaptive and recommended_ms is not None and min_ms <= recommended_ms <= max_ms:
        return int(recommended_ms)
    return clamp_interval(current_ms, min_ms, max_ms)


def retry_delay(interval_ms: int, retry_count: int, max_ms: int, factor: int = 2) -> int:
    """
    Delay before retry number `retry_count` (1-based).

    Exponential in the retry count, starting at the current interval and
    capped at `max_ms`. Non-decreasing in `retry_count`.
    """
    exponent = min(max(retry_count - 1, 0), MAX_BACKOFF_EXPONENT)
    return int(min(interval_ms * factor ** exponent, max_ms))
