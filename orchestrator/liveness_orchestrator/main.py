"""FastAPI entry-point for the liveness orchestrator."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import psutil
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from .config import Settings, get_settings
from .logging_config import configure_logging
from .orchestrator import LivenessOrchestrator
from .sensors.webcam_service import WebcamCaptureSource

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings)

webcam_service = WebcamCaptureSource(settings.capture, settings.performance)
manager = LivenessOrchestrator(settings=settings, capture_source=webcam_service)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    try:
        await webcam_service.start()
        await manager.start()
        logger.info("Application started successfully")
    except Exception as e:
        logger.exception(f"Failed to start services: {e}")
        logger.error("Application startup failed - some features may not work")
        # Don't re-raise - allow app to start in degraded mode
    yield
    try:
        await manager.teardown()
        await webcam_service.stop()
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


app = FastAPI(title="liveness-orchestrator", version="0.1.0", lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Catch-all exception handler to prevent application crashes."""
    logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
    return PlainTextResponse(
        f"Internal server error: {str(exc)}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors gracefully."""
    logger.warning(f"Validation error in {request.url.path}: {exc}")
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)}
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok", "phase": manager.phase.value})


@app.get("/debug/performance")
async def debug_performance() -> JSONResponse:
    """Get real-time CPU and memory usage."""
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        memory = psutil.virtual_memory()

        return JSONResponse({
            "cpu_percent": round(cpu_percent, 1),
            "memory_percent": round(memory.percent, 1),
            "memory_used_mb": round(memory.used / (1024 * 1024), 1),
            "memory_total_mb": round(memory.total / (1024 * 1024), 1)
        })
    except Exception as e:
        logger.error(f"Performance monitoring error: {e}")
        return JSONResponse(
            {"error": str(e)},
            status_code=500
        )


@app.get("/attempt")
async def attempt_snapshot() -> JSONResponse:
    return JSONResponse(manager.snapshot())


@app.post("/attempt/start")
async def attempt_start() -> JSONResponse:
    """Start a new verification attempt (any running attempt is reset first)."""
    await manager.start_attempt()
    logger.info("🚀 Attempt started via API")
    return JSONResponse({"status": "started", "phase": manager.phase.value}, status_code=202)


@app.post("/attempt/reset")
async def attempt_reset() -> JSONResponse:
    await manager.reset_attempt()
    return JSONResponse({"status": "reset", "phase": manager.phase.value})


@app.get("/preview")
async def preview_stream() -> StreamingResponse:
    """Stream the mirrored camera preview as MJPEG."""
    boundary = "frame"

    async def frame_iterator() -> AsyncIterator[bytes]:
        try:
            async for frame in webcam_service.preview_stream():
                header = (
                    f"--{boundary}\r\n"
                    f"Content-Type: image/jpeg\r\n"
                    f"Content-Length: {len(frame)}\r\n\r\n"
                ).encode("ascii")
                yield header + frame + b"\r\n"
        except Exception as e:
            logger.error(f"Preview stream error: {e}")
            # Stream will end gracefully

    media_type = f"multipart/x-mixed-replace; boundary={boundary}"
    return StreamingResponse(frame_iterator(), media_type=media_type)


@app.websocket("/ws/ui")
async def ui_socket(ws: WebSocket) -> None:
    await ws.accept()
    queue = manager.register_ui()
    try:
        # Late joiners get the current state first
        await ws.send_json({"type": "state", **manager.snapshot()})
        while True:
            try:
                event = await queue.get()
            except asyncio.CancelledError:
                break  # Clean shutdown

            try:
                await ws.send_json(event.to_payload())
            except Exception as e:
                # WebSocket closed, break out of loop
                logger.debug(f"WebSocket send failed (client disconnected): {e}")
                break
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass  # Clean shutdown
    except Exception as e:
        logger.error(f"Unexpected error in UI websocket: {e}")
    finally:
        manager.unregister_ui(queue)
        try:
            await ws.close()
        except Exception:
            pass
