"""Small timing helpers for DEBUG-mode phase logging."""
import time
from contextlib import contextmanager
from typing import Optional, Callable
import logging

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """High-resolution monotonic clock in milliseconds."""
    return time.perf_counter() * 1000


@contextmanager
def time_operation(label: str, log_fn: Optional[Callable[[str], None]] = None, min_ms: float = 0.0):
    """
    Log how long the wrapped block took.

    Example:
        with time_operation("strategy=collection_gap", logger.info, min_ms=50):
            await runner.run(collection, profile)
    """
    start = now_ms()
    try:
        yield
    finally:
        elapsed = now_ms() - start
        if elapsed >= min_ms:
            (log_fn or logger.debug)(f"{label}: {elapsed:.2f}ms")


def log_elapsed(start_ms: float, label: str, log_fn: Optional[Callable[[str], None]] = None) -> float:
    """Log the time since ``start_ms`` and return a fresh start point for chaining."""
    elapsed = now_ms() - start_ms
    (log_fn or logger.debug)(f"{label}: {elapsed:.2f}ms")
    return now_ms()
