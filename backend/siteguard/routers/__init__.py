"""API routers."""
from .targets import router as targets_router
from .alerts import router as alerts_router
from .status import router as status_router, ws_router as status_ws_router

__all__ = ["targets_router", "alerts_router", "status_router", "status_ws_router"]
