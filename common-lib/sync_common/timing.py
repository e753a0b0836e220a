import logging
import time
from functools import wraps

LOG = logging.getLogger(__name__)


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def log_slow(threshold_ms: float = 100):
    """Log a warning when the decorated call takes longer than threshold_ms."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - start_time) * 1000
                if duration_ms > threshold_ms:
                    LOG.warning("Slow call '%s' took %.1f ms", func.__qualname__, duration_ms)

        return wrapper

    return decorator
