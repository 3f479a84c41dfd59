"""
FastAPI application factory.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kitchen_print import __version__
from kitchen_print.api.dependencies import init_dependencies
from kitchen_print.api.routes import router
from kitchen_print.config import build_service, seed_from_config
from kitchen_print.service import PrintService

logger = logging.getLogger(__name__)


async def _log_printers(service: PrintService) -> None:
    printers = await service.printers.list_all()
    if not printers:
        logger.warning("No printers registered yet, orders will be rejected until one is added")
    for printer in printers:
        state = "active" if printer.is_active else "inactive"
        logger.info(
            f"  {printer.name} ({printer.id}): {printer.transport.value} "
            f"{printer.ip_address}:{printer.port} [{state}]"
        )


def create_app(
    config: Optional[dict] = None,
    service: Optional[PrintService] = None,
    cors_origins: Optional[list[str]] = None,
    debug: bool = False
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Loaded configuration; its printers/mappings seed empty stores on startup
        service: Pre-built print service (built from config when omitted)
        cors_origins: Origins allowed to call the API (None = any, for the POS front end in development)
        debug: FastAPI debug mode
    """
    config = config or {}
    service = service or build_service(config)

    app = FastAPI(
        title="Kitchen Print Gateway",
        description="Routes restaurant orders to kitchen printers by category",
        version=__version__,
        debug=debug
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins is not None else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    init_dependencies(service)
    app.state.print_service = service
    app.include_router(router)

    @app.on_event("startup")
    async def seed_and_report():
        await service.tracker.recover_interrupted()
        await seed_from_config(service, config)
        await _log_printers(service)
        logger.info(
            f"Kitchen Print Gateway ready, default backend: {service.backends.default}"
        )

    @app.on_event("shutdown")
    async def stop_dispatching():
        logger.info("Kitchen Print Gateway shutting down, cancelling in-flight prints")
        await service.dispatcher.shutdown()

    return app
