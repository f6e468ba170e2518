import asyncio
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

import config
from broadcast_hub import HUB, WebSocketSubscriber
from device_link import DEVICE_LINK, run_liveness_monitor
from models import MonitoringPatch
from shared_store import STORE
from simulator import run_simulator

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()
INDEX_PATH = os.path.join(config.STATIC_DIR, "index.html")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _log_loop_exception(loop, context):
    # Keep serving: a stray task failure should not take the relay down
    logger.error(f"Unhandled error: {context.get('message')}", exc_info=context.get("exception"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    tasks = [asyncio.create_task(run_liveness_monitor(DEVICE_LINK, config.LIVENESS_CHECK_INTERVAL_SEC))]
    if config.SIMULATION_MODE:
        tasks.append(asyncio.create_task(run_simulator(HUB, DEVICE_LINK, config.SIMULATION_INTERVAL_SEC)))
    try:
        yield
    finally:
        logger.info("Shutting down server...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


app = FastAPI(title="ESP32 SCADA Relay", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
    logger.warning(f"Rejected {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body", "details": errors})


@app.get("/")
async def root():
    if os.path.isfile(INDEX_PATH):
        return FileResponse(INDEX_PATH)
    return {
        "message": "ESP32 SCADA Relay",
        "esp32Connected": DEVICE_LINK.connected,
        "available_endpoints": [
            "GET /api/controls - Current control states (polled by the ESP32)",
            "POST /api/monitoring - Push monitoring data from the ESP32",
            "GET /api/status - Relay and device status",
            "WS /ws - Real-time channel for the web UI and the ESP32",
        ],
    }


@app.get("/api/controls")
async def get_controls():
    return {
        "success": True,
        "data": STORE.get_controls(),
        "timestamp": _now_ms(),
    }


@app.post("/api/monitoring")
async def post_monitoring(patch: MonitoringPatch):
    try:
        _, last_update = HUB.ingest_monitoring(patch)
    except Exception:
        logger.exception("Error processing monitoring data")
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    logger.info(f"Monitoring data received from ESP32: {patch.sections()}")
    return {
        "success": True,
        "message": "Monitoring data updated",
        "timestamp": last_update,
    }


@app.get("/api/status")
async def get_status():
    return {
        "success": True,
        "esp32Connected": DEVICE_LINK.connected,
        "connectedClients": HUB.client_count,
        "lastUpdate": STORE.last_update,
        "uptime": round(time.monotonic() - STARTED_AT, 3),
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Real-time channel shared by browsers and the ESP32 (after esp32Connect)."""
    await websocket.accept()
    client_id = uuid.uuid4().hex[:12]
    subscriber = WebSocketSubscriber(client_id, websocket)
    writer = asyncio.create_task(subscriber.run())
    HUB.on_connect(subscriber)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"Malformed frame from client {client_id}")
                HUB.reply_error(client_id, "Malformed JSON frame")
                continue
            HUB.handle_message(client_id, message)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception(f"Error on connection {client_id}, closing it")
    finally:
        HUB.on_disconnect(client_id)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)


# Web UI assets (index.html, script.js, style.css) when shipped next to the relay
if os.path.isdir(config.STATIC_DIR):
    app.mount("/", StaticFiles(directory=config.STATIC_DIR), name="static")
