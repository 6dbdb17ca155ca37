"""HTTP routers for probes and metrics."""

from . import health, metrics

__all__ = ["health", "metrics"]
