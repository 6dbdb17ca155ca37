"""
Utility modules
"""

from .hashing import content_hash, fnv1a_32
from .retry import (
    ItemBackoff,
    RetryConfig,
    calculate_delay,
    RECONCILE_ERROR_BACKOFF,
    WATCH_RECONNECT_BACKOFF,
)

__all__ = [
    # Hashing
    "content_hash",
    "fnv1a_32",
    # Retry
    "ItemBackoff",
    "RetryConfig",
    "calculate_delay",
    "RECONCILE_ERROR_BACKOFF",
    "WATCH_RECONNECT_BACKOFF",
]
