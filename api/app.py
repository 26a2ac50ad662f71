"""FastAPI application factory for the CoIoT inspection API.

Creates the app with all routers mounted and the DeviceManager injected
via app.state.
"""

import asyncio
import logging

from fastapi import FastAPI

from core.session import SessionState

from .routes_devices import router as devices_router
from .routes_ws import router as ws_router
from .websocket_hub import WebSocketHub

logger = logging.getLogger("coiotd.api")


def create_app(manager, ws_hub: WebSocketHub = None, message_inspector=None) -> FastAPI:
    """Create the FastAPI application with all routes.

    Args:
        manager: DeviceManager instance (injected into app.state)
        ws_hub: WebSocketHub for real-time channel broadcast
        message_inspector: MessageInspector for history access
    """
    app = FastAPI(
        title="coiotd",
        description="Inspection API for the CoIoT status engine",
        version="1.0.0",
    )

    app.state.manager = manager
    app.state.ws_hub = ws_hub or WebSocketHub()
    app.state.message_inspector = message_inspector

    app.include_router(devices_router)
    app.include_router(ws_router)

    # Set app reference on routers (needed for app.state access)
    devices_router.app = app
    ws_router.app = app

    # Capture the event loop on startup for thread-safe WebSocket pushes
    @app.on_event("startup")
    async def on_startup():
        loop = asyncio.get_running_loop()
        app.state.ws_hub.set_loop(loop)
        logger.info("WebSocket hub bound to event loop")

    @app.get("/api/v1/health", tags=["system"])
    def health():
        """Health check - listener state, session count and WS connections."""
        sessions = list(manager.sessions.values())
        return {
            "status": "ok",
            "listener_running": manager.listener.is_running,
            "devices_total": len(sessions),
            "devices_observing": sum(1 for s in sessions if s.state == SessionState.OBSERVING),
            "ws_connections": app.state.ws_hub.connection_count,
        }

    logger.info("FastAPI app created with %d routers", 2)
    return app
