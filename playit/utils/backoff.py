import random

MAX_POLL_DELAY = 30.0


def exp_backoff_with_jitter(attempt: int, base: float = 2.0, initial: float = 1.0, max_delay: float = MAX_POLL_DELAY) -> float:
    attempt = max(attempt, 1)
    delay = min(max_delay, initial * (base ** (attempt - 1)))
    return min(max_delay, delay + random.uniform(0, delay * 0.25))


def poll_delay(interval: float, failures: int, max_delay: float = MAX_POLL_DELAY) -> float:
    """Seconds to wait before the next poll.

    The fixed interval while polls succeed; after consecutive failures the
    wait grows from the interval, never dropping below it.
    """
    if failures < 1:
        return interval
    cap = max(max_delay, interval)
    return max(interval, exp_backoff_with_jitter(failures, initial=interval, max_delay=cap))
