"""
Schema Registry Operator entry point.

Runs the Schema and SchemaVersion controllers inside the lifespan of a small
FastAPI application that serves the liveness/readiness probes and the
Prometheus metrics endpoint.
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from sroperator import __version__
from sroperator.controllers import ControllerManager
from sroperator.core import configure_logging, get_logger
from sroperator.core.config import OperatorSettings, get_settings
from sroperator.core.startup_checks import run_startup_checks
from sroperator.routers import health, metrics
from sroperator.services.observability.health import get_health_service
from sroperator.services.registry_client import RegistryClientFactory
from sroperator.services.store import ResourceStore, create_store

logger = get_logger(__name__)


def create_app(
    settings: Optional[OperatorSettings] = None,
    store: Optional[ResourceStore] = None,
    client_factory: Optional[RegistryClientFactory] = None,
) -> FastAPI:
    """
    Build the operator application.

    Args:
        settings: operator settings (defaults to the environment)
        store: resource store to use instead of the one STORE_BACKEND selects
        client_factory: registry client factory override
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        logger.info(
            "Starting Schema Registry Operator",
            version=cfg.app_version,
            store_backend=cfg.store_backend,
            watch_namespace=cfg.watch_namespace or "<all>",
        )

        resource_store = store or await create_store(cfg)
        await run_startup_checks(cfg, resource_store)

        manager = ControllerManager.build(resource_store, cfg, client_factory)
        await manager.start()

        health_service = get_health_service()
        health_service.attach(resource_store, manager)
        app.state.store = resource_store
        app.state.manager = manager

        yield

        logger.info("Shutting down Schema Registry Operator")
        health_service.detach()
        await manager.stop()
        if store is None:
            await resource_store.close()

    app = FastAPI(
        title="Schema Registry Operator",
        description="Probes and metrics of the schema registry operator",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.include_router(health.router, tags=["Health"])
    app.include_router(metrics.router, tags=["Metrics"])
    return app


configure_logging()
app = create_app()


def run() -> None:
    """Console script entry point"""
    settings = get_settings()
    uvicorn.run(
        "sroperator.main:app",
        host=settings.probe_host,
        port=settings.probe_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
