"""
Health Router - liveness, readiness and detailed health probes.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from sroperator.services.observability.health import get_health_service

router = APIRouter()


@router.get(
    "/healthz",
    summary="Liveness Probe",
    description="Returns 200 while the process is serving requests.",
)
async def liveness():
    health_service = get_health_service()
    return {
        "status": "alive",
        "version": health_service.version,
        "uptime_seconds": round(health_service.get_uptime(), 2),
    }


@router.get(
    "/readyz",
    summary="Readiness Probe",
    description="Returns 200 once the controllers run and the store is reachable, 503 otherwise.",
)
async def readiness():
    ready = await get_health_service().is_ready()
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready"},
    )


@router.get(
    "/health/detailed",
    summary="Detailed Health Check",
    description="Component level health: store, controllers, disk and memory.",
)
async def health_detailed():
    """
    Detailed health check with component-level information.

    Returns 200 for healthy/degraded, 503 for unhealthy.
    """
    health = await get_health_service().check_health(detailed=True)
    status_code = 503 if health["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=health)
