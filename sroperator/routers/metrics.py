"""
Prometheus Metrics Router - operator metrics endpoint for scraping.
"""

from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from sroperator.services.observability.prometheus import get_registry

router = APIRouter()


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus Metrics",
    description="Reconcile, work queue and registry request metrics in Prometheus text format",
)
async def get_metrics():
    return Response(
        content=get_registry().export(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
