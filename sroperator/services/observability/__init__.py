"""
Observability - operator metrics and health checks
"""

from .prometheus import MetricType, PrometheusRegistry, get_registry
from .health import ComponentHealth, HealthService, SystemHealth, get_health_service

__all__ = [
    "MetricType",
    "PrometheusRegistry",
    "get_registry",
    "ComponentHealth",
    "HealthService",
    "SystemHealth",
    "get_health_service",
]
