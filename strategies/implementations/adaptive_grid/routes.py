"""
HTTP surface of the adaptive grid module.

Mounted under ``/api/adaptive-grid``. Failures answer
``{"success": false, "error": "..."}``; a ``traceback`` field is added only
when the service runs with ``debug_errors`` enabled.
"""

import traceback
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import APIRouter, Body, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import GridCloseError, GridCreationError, GridNotFoundError, GridValidationError
from .models import CompletionReason, TradingSignal

if TYPE_CHECKING:
    from .strategy import AdaptiveSmartGrid


# Request Models
class CreateGridRequest(BaseModel):
    signal: Dict[str, Any] = Field(..., description="Trading signal (pair, direction, entry_point, ...)")
    options: Dict[str, Any] = Field(default_factory=dict, description="position_size / grid_levels overrides")


class CloseGridRequest(BaseModel):
    reason: Optional[str] = Field(default=None, description="Completion reason recorded on the grid")


def _error_response(exc: BaseException, status_code: int, debug_errors: bool) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": str(exc)}
    if debug_errors:
        content["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=content)


def build_router(module: "AdaptiveSmartGrid") -> APIRouter:
    """
    Create the router bound to ``module``.

    ``debug_errors`` is read from the module context on every failure; the
    router is mounted before the module is initialized.
    """
    router = APIRouter(prefix="/api/adaptive-grid", tags=["adaptive-grid"])

    def fail(exc: BaseException, status_code: int) -> JSONResponse:
        if status_code >= 500:
            module.logger.error(f"API error: {exc}")
        debug_errors = bool(module.context and module.context.debug_errors)
        return _error_response(exc, status_code, debug_errors)

    @router.post("/create")
    async def create_grid(request: CreateGridRequest):
        """Create a grid from a signal."""
        try:
            signal = TradingSignal.from_dict(request.signal)
            result = await module.create_grid_from_signal(signal, request.options)
        except (GridValidationError, ValueError, ArithmeticError) as exc:
            return fail(exc, status.HTTP_400_BAD_REQUEST)
        except GridCreationError as exc:
            return fail(exc, status.HTTP_502_BAD_GATEWAY)
        except Exception as exc:
            return fail(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
        return result.to_dict()

    @router.get("/active")
    async def list_active_grids():
        grids = module.get_active_grids()
        return {"success": True, "grids": [grid.active_summary() for grid in grids]}

    @router.get("/history")
    async def list_grid_history(limit: int = Query(50, ge=1, le=1000)):
        """Completed grids, newest first."""
        grids = module.get_grid_history(limit)
        return {"success": True, "grids": [grid.history_summary() for grid in grids]}

    @router.get("/config")
    async def get_config():
        return {"success": True, "config": module.config.model_dump(mode="json")}

    @router.post("/config")
    async def update_config(overrides: Dict[str, Any] = Body(...)):
        """Merge ``overrides`` into the module configuration."""
        try:
            config = module.update_config(overrides)
        except GridValidationError as exc:
            return fail(exc, status.HTTP_400_BAD_REQUEST)
        return {"success": True, "config": config.model_dump(mode="json")}

    @router.get("/{grid_id}")
    async def get_grid(grid_id: str):
        try:
            grid = module.require_grid(grid_id)
        except GridNotFoundError as exc:
            return fail(exc, status.HTTP_404_NOT_FOUND)
        return {"success": True, "grid": grid.to_dict()}

    @router.post("/{grid_id}/close")
    async def close_grid(grid_id: str, request: Optional[CloseGridRequest] = None):
        reason = (request.reason if request else None) or CompletionReason.MANUAL_CLOSE
        try:
            closed = await module.close_grid(grid_id, reason)
        except GridValidationError as exc:
            return fail(exc, status.HTTP_400_BAD_REQUEST)
        except GridCloseError as exc:
            return fail(exc, status.HTTP_502_BAD_GATEWAY)
        except Exception as exc:
            return fail(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)

        if not closed:
            return fail(
                GridNotFoundError(f"Active grid {grid_id} not found"),
                status.HTTP_404_NOT_FOUND,
            )
        return {"success": True, "grid_id": grid_id, "reason": reason}

    return router
