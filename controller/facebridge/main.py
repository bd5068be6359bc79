"""FastAPI entry-point for the face capture bridge."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .config import Settings, get_settings
from .errors import SessionBusyError
from .logging_config import configure_logging
from .session_manager import SessionManager
from .surface.commands import WebSocketSurface

logger = logging.getLogger(__name__)


class SessionStartRequest(BaseModel):
    reference_image: Optional[str] = None
    reference_vector: Optional[str] = None


def create_app(settings: Optional[Settings] = None, manager: Optional[SessionManager] = None) -> FastAPI:
    settings = settings or get_settings()
    manager = manager or SessionManager(settings=settings)
    app = FastAPI(title="facebridge", version="0.1.0")
    app.state.manager = manager

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.stop()
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        phase = manager.phase
        return JSONResponse(
            {
                "status": "ok",
                "phase": phase.value if phase else "idle",
                "surface_attached": manager.surface_attached,
            }
        )

    @app.post("/sessions")
    async def start_session(payload: SessionStartRequest) -> JSONResponse:
        try:
            session = await manager.start_session(
                reference_image=payload.reference_image or "",
                reference_vector=payload.reference_vector or "",
            )
        except SessionBusyError as exc:
            return JSONResponse({"status": "error", "message": exc.user_message}, status_code=409)
        return JSONResponse(
            {"status": "opened", "phase": session.phase.value, "identity": session.identity.kind.value},
            status_code=201,
        )

    @app.get("/sessions/current")
    async def current_session() -> JSONResponse:
        session = manager.session
        if session is None:
            return JSONResponse({"status": "error", "message": "No active session"}, status_code=404)
        return JSONResponse({"phase": session.phase.value, "identity": session.identity.kind.value})

    @app.delete("/sessions/current")
    async def end_current_session() -> JSONResponse:
        result = await manager.end_session("cancelled")
        if result is None:
            return JSONResponse({"status": "error", "message": "No active session"}, status_code=404)
        return JSONResponse({"status": "ended", "result": result.to_dict()})

    @app.get("/sessions/result")
    async def last_result() -> JSONResponse:
        result = manager.last_result
        if result is None:
            return JSONResponse({"status": "error", "message": "No result yet"}, status_code=404)
        return JSONResponse(result.to_dict())

    @app.get("/preferences")
    async def preferences() -> JSONResponse:
        return JSONResponse(manager.store.snapshot())

    @app.websocket("/ws/surface")
    async def surface_socket(ws: WebSocket) -> None:
        await ws.accept()

        async def send(frame: dict[str, Any]) -> None:
            await ws.send_json(frame)

        surface = WebSocketSurface(
            send,
            manager.handle_navigation,
            command_timeout=settings.surface.command_timeout_s,
        )
        await manager.attach_surface(surface)
        try:
            while True:
                message = await ws.receive_text()
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from content surface: %s", message)
                    continue
                if not isinstance(frame, dict):
                    logger.warning("Ignoring non-object surface frame: %r", frame)
                    continue
                await surface.feed(frame)
        except WebSocketDisconnect:
            logger.info("Content surface disconnected")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Unexpected error in surface websocket: %s", e)
        finally:
            surface.close()
            await manager.detach_surface(surface)

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        # Subscribed before the handshake completes.
        queue = manager.register_ui()
        try:
            await ws.accept()
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break

                payload = {
                    "type": event.type,
                    "phase": event.phase.value if event.phase else None,
                    "data": event.data,
                }
                if event.error:
                    payload["error"] = event.error

                try:
                    await ws.send_json(payload)
                except Exception as e:
                    logger.debug("WebSocket send failed (client disconnected): %s", e)
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Unexpected error in UI websocket: %s", e)
        finally:
            manager.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
    uvicorn.run(create_app(settings), host=settings.controller_host, port=settings.controller_port)


if __name__ == "__main__":
    run()
