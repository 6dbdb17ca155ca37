"""
Requeue backoff calculation.

Capped exponential delays plus a per-key failure tracker used by the
controller work queue: every consecutive failure of the same object doubles
its delay until the object reconciles cleanly.
"""

import random
import threading
from dataclasses import dataclass
from typing import Dict, Hashable


@dataclass
class RetryConfig:
    """Backoff configuration"""
    base_delay: float = 0.005      # seconds
    max_delay: float = 1000.0      # seconds
    jitter: bool = False           # spread reconnects over 0.5x .. 1.5x


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the given (zero based) retry attempt"""
    # cap the exponent, 2 ** 64 seconds is already past any max_delay
    delay = min(config.base_delay * (2 ** min(attempt, 64)), config.max_delay)

    if config.jitter:
        delay *= random.uniform(0.5, 1.5)

    return delay


class ItemBackoff:
    """
    Per-item exponential failure backoff.

    Mirrors the rate limiter of a controller work queue: the n-th consecutive
    failure of a key waits base_delay * 2**n (capped), forget() resets it.
    """

    def __init__(self, config: RetryConfig = None):
        self.config = config or RetryConfig()
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        """Record one more failure of key and return how long to wait"""
        with self._lock:
            attempt = self._failures.get(key, 0)
            self._failures[key] = attempt + 1
        return calculate_delay(attempt, self.config)

    def failures(self, key: Hashable) -> int:
        """Number of consecutive failures recorded for key"""
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of key"""
        with self._lock:
            self._failures.pop(key, None)


# ============================================
# Predefined configurations
# ============================================

# Generic reconcile errors (controller-runtime defaults: 5ms .. 1000s)
RECONCILE_ERROR_BACKOFF = RetryConfig(base_delay=0.005, max_delay=1000.0)

# Watch stream reconnects
WATCH_RECONNECT_BACKOFF = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=True)
