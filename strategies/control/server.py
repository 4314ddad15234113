"""
Control API Server

FastAPI application hosting the HTTP surface of every registered trading
module. Modules are initialized when the app starts and cleaned up when it
stops; each one mounts its own router through ``register_api_endpoints``.
"""

import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from helpers.unified_logger import get_service_logger
from strategies.base_module import ModuleContext
from strategies.registry import ModuleRegistry


def create_app(registry: ModuleRegistry, context: ModuleContext) -> FastAPI:
    """
    Build the control API for ``registry``.

    Args:
        registry: Modules to host (initialized on startup)
        context: Shared services handed to every module
    """
    logger = get_service_logger("control_api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.initialize_all(context)
        logger.info(f"Control API ready with modules: {', '.join(m.get_module_id() for m in registry.all())}")
        try:
            yield
        finally:
            await registry.cleanup_all()
            await context.event_bus.drain()
            logger.info("Control API stopped")

    app = FastAPI(
        title="Smart Grid Control API",
        description="REST API for the adaptive smart grid trading module",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "modules": {
                module.get_module_id(): module.is_initialized for module in registry.all()
            },
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        content: Dict[str, Any] = {"success": False, "error": f"Internal server error: {exc}"}
        if context.debug_errors:
            content["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    registry.register_api_endpoints(app)
    return app
