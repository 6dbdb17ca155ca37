"""
Health Check Service - operator health for probes and debugging.

Features:
- Resource store reachability and response time
- Controller state (running workers, watch connection, queue depth)
- Disk space and memory usage
- Version and uptime tracking
"""

import platform
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import psutil

from sroperator.core import get_logger
from sroperator.core.config import get_settings
from sroperator.exceptions import OperatorException

logger = get_logger(__name__)


@dataclass
class ComponentHealth:
    """Individual component health status."""
    status: str  # "healthy", "degraded", "unhealthy"
    response_time_ms: Optional[float] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


@dataclass
class SystemHealth:
    """Overall operator health status."""
    status: str
    timestamp: str
    uptime_seconds: float
    version: str
    components: Dict[str, ComponentHealth]
    system_info: Optional[Dict[str, Any]] = None


class HealthService:
    """Health checks over the store and the controller manager."""

    def __init__(self, version: Optional[str] = None):
        self.start_time = time.time()
        self.version = version or get_settings().app_version
        self.store = None
        self.manager = None

    def attach(self, store, manager) -> None:
        """Register the running store and controller manager."""
        self.store = store
        self.manager = manager

    def detach(self) -> None:
        self.store = None
        self.manager = None

    def get_uptime(self) -> float:
        return time.time() - self.start_time

    async def is_ready(self) -> bool:
        """Manager started and store reachable."""
        if self.manager is None or not self.manager.started:
            return False
        return (await self._check_store()).status != "unhealthy"

    async def check_health(self, detailed: bool = False) -> Dict[str, Any]:
        """
        Perform health check.

        Args:
            detailed: If True, include host information

        Returns:
            Health status dictionary
        """
        components = {
            "store": await self._check_store(),
            "controllers": self._check_controllers(),
            "disk": self._check_disk_space(),
            "memory": self._check_memory(),
        }

        health = SystemHealth(
            status=self._determine_overall_status(components),
            timestamp=datetime.utcnow().isoformat(),
            uptime_seconds=self.get_uptime(),
            version=self.version,
            components=components,
            system_info=self._get_system_info() if detailed else None,
        )
        return asdict(health)

    async def _check_store(self) -> ComponentHealth:
        """Check resource store reachability."""
        if self.store is None:
            return ComponentHealth(status="unhealthy", message="Store not initialised")

        start = time.time()
        try:
            await self.store.ping()
        except OperatorException as e:
            logger.error("Store health check failed", error=e.message)
            return ComponentHealth(status="unhealthy", message=f"Connection failed: {e.message}")

        response_time = (time.time() - start) * 1000
        if response_time > 1000:
            status = "degraded"
            message = f"High latency: {response_time:.2f}ms"
        else:
            status = "healthy"
            message = "Connected"
        return ComponentHealth(status=status, response_time_ms=round(response_time, 2), message=message)

    def _check_controllers(self) -> ComponentHealth:
        """Check that every controller is running with a live watch."""
        if self.manager is None:
            return ComponentHealth(status="unhealthy", message="Controller manager not started")

        details = self.manager.status()
        stopped = [name for name, state in details.items() if not state["running"]]
        disconnected = [name for name, state in details.items() if not state["watch_connected"]]

        if stopped:
            return ComponentHealth(status="unhealthy", message=f"Stopped: {', '.join(stopped)}", details=details)
        if disconnected:
            return ComponentHealth(status="degraded", message=f"Watch reconnecting: {', '.join(disconnected)}", details=details)
        return ComponentHealth(status="healthy", message="Running", details=details)

    def _check_disk_space(self) -> ComponentHealth:
        """Check disk space availability."""
        try:
            disk = psutil.disk_usage('/')
        except OSError as e:
            logger.error("Disk space check failed", error=str(e))
            return ComponentHealth(status="unhealthy", message=f"Check failed: {e}")

        available_percent = (disk.free / disk.total) * 100
        if available_percent < 10:
            status = "unhealthy"
            message = f"Critical: Only {available_percent:.1f}% available"
        elif available_percent < 20:
            status = "degraded"
            message = f"Warning: {available_percent:.1f}% available"
        else:
            status = "healthy"
            message = f"{available_percent:.1f}% available"

        return ComponentHealth(
            status=status,
            message=message,
            details={
                "total_gb": round(disk.total / (1024**3), 2),
                "free_gb": round(disk.free / (1024**3), 2),
                "percent_used": round(disk.percent, 1),
            },
        )

    def _check_memory(self) -> ComponentHealth:
        """Check memory usage."""
        memory = psutil.virtual_memory()
        used_percent = memory.percent

        if used_percent > 90:
            status = "unhealthy"
            message = f"Critical: {used_percent:.1f}% used"
        elif used_percent > 85:
            status = "degraded"
            message = f"Warning: {used_percent:.1f}% used"
        else:
            status = "healthy"
            message = f"{used_percent:.1f}% used"

        return ComponentHealth(
            status=status,
            message=message,
            details={
                "total_gb": round(memory.total / (1024**3), 2),
                "available_gb": round(memory.available / (1024**3), 2),
                "percent_used": round(used_percent, 1),
            },
        )

    def _determine_overall_status(self, components: Dict[str, ComponentHealth]) -> str:
        """
        Overall status from component health.

        The store and the controllers are critical; disk and memory only
        degrade the result.
        """
        critical_unhealthy = any(
            components[name].status == "unhealthy" for name in ("store", "controllers")
        )
        unhealthy_count = sum(1 for c in components.values() if c.status == "unhealthy")
        degraded_count = sum(1 for c in components.values() if c.status == "degraded")

        if critical_unhealthy or unhealthy_count >= 2:
            return "unhealthy"
        elif unhealthy_count > 0 or degraded_count > 0:
            return "degraded"
        return "healthy"

    def _get_system_info(self) -> Dict[str, Any]:
        return {
            "python_version": platform.python_version(),
            "platform": platform.platform(),
            "cpu_count": psutil.cpu_count(),
            "hostname": platform.node(),
            "boot_time": datetime.fromtimestamp(psutil.boot_time()).isoformat(),
        }


# Global health service instance
_health_service: Optional[HealthService] = None


def get_health_service() -> HealthService:
    """Get or create the global health service instance."""
    global _health_service
    if _health_service is None:
        _health_service = HealthService()
    return _health_service
