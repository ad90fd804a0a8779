"""
Presence Monitor: FastAPI application entry point.

Starts the Presence Service on startup, serves the REST API and
WebSocket endpoint.
"""

import logging
import os
import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import PresenceBroadcaster
from config import API_HOST, API_PORT, AUTOSTART, CORS_ORIGINS, DEVICES, REPORT_FIRST_RESULT
from presence.service import PresenceService

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
presence_service = PresenceService()
broadcaster = PresenceBroadcaster(presence_service)


def _terminate(exc: BaseException) -> None:
    """Shut the server down after a fatal probe error."""
    logger.critical(f"Fatal presence error, terminating: {exc}")
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info("Starting Presence Monitor services...")

    try:
        # Wire up event broadcasting
        presence_service.on_event(broadcaster.handle_event)
        presence_service.on_failure(_terminate)

        presence_service.add_devices(DEVICES)
        if AUTOSTART:
            await presence_service.start(report_first_result=REPORT_FIRST_RESULT)

        logger.info(
            f"Presence Monitor ready. API: {API_HOST}:{API_PORT}, "
            f"devices: {len(presence_service.get_devices())}"
        )

        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        # Shutdown
        logger.info("Shutting down Presence Monitor services...")
        await presence_service.stop()


# --- FastAPI app ---
app = FastAPI(
    title="Presence Monitor",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(presence_service)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await broadcaster.connect(websocket)
    try:
        while True:
            # Keep the connection alive; client messages are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)


def run() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
