"""Command channel: host-to-surface script evaluation."""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional

from ..errors import CommandFailure, SurfaceNotAttachedError
from .callbacks import NavigationRequest

logger = logging.getLogger(__name__)

FrameSender = Callable[[Dict[str, Any]], Awaitable[None]]
NavigationHandler = Callable[[NavigationRequest], None]

STOP_CAMERA = "stopCamera()"
GET_LAST_MATCH_IMAGE = "getLastMatchImage()"
REGISTER_NO_VECTOR = "registerExternalImageNoVector()"


def js_string(value: str) -> str:
    """Single-quoted script literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f"'{escaped}'"


def register_external_image(vector_expr: str, label: str) -> str:
    # The vector is already a script expression (an array literal) and is passed unquoted.
    return f"registerExternalImage({vector_expr}, {js_string(label)})"


def register_external_image_from_base64(base64_image: str, label: str) -> str:
    return f"registerExternalImageFromBase64({js_string(base64_image)}, {js_string(label)})"


def register_external_image_no_vector() -> str:
    return REGISTER_NO_VECTOR


class ContentSurface:
    """Embedded page that runs detection; evaluates scripts one at a time."""

    async def evaluate(self, script: str) -> Optional[str]:
        raise NotImplementedError

    async def load(self, url: str) -> None:
        raise NotImplementedError


class SurfaceSlot(ContentSurface):
    """Forwards commands to whichever surface is currently attached."""

    def __init__(self) -> None:
        self.current: Optional[ContentSurface] = None

    @property
    def attached(self) -> bool:
        return self.current is not None

    async def evaluate(self, script: str) -> Optional[str]:
        surface = self.current
        if surface is None:
            raise SurfaceNotAttachedError(script)
        return await surface.evaluate(script)

    async def load(self, url: str) -> None:
        surface = self.current
        if surface is None:
            raise SurfaceNotAttachedError(f"load({url})")
        await surface.load(url)


class WebSocketSurface(ContentSurface):
    """Content surface attached over the local ``/ws/surface`` socket.

    Outgoing commands are ``evaluate`` frames correlated with ``result``
    frames by id. Incoming ``navigating`` frames are answered before the next
    frame is read, so a cancellation always lands before the page proceeds.
    """

    def __init__(
        self,
        send: FrameSender,
        navigation_handler: NavigationHandler,
        *,
        command_timeout: float = 10.0,
    ) -> None:
        self._send = send
        self._navigation_handler = navigation_handler
        self._command_timeout = command_timeout
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future[Optional[str]]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def load(self, url: str) -> None:
        if self._closed:
            raise SurfaceNotAttachedError(f"load({url})")
        await self._send({"type": "load", "url": url})

    async def evaluate(self, script: str) -> Optional[str]:
        if self._closed:
            raise SurfaceNotAttachedError(script)

        command_id = next(self._ids)
        future: asyncio.Future[Optional[str]] = asyncio.get_running_loop().create_future()
        self._pending[command_id] = future
        try:
            try:
                await self._send({"type": "evaluate", "id": command_id, "script": script})
            except Exception as exc:
                raise CommandFailure(script, f"send failed: {exc}") from exc
            try:
                return await asyncio.wait_for(future, timeout=self._command_timeout)
            except asyncio.TimeoutError as exc:
                raise CommandFailure(script, f"no result within {self._command_timeout}s") from exc
        finally:
            self._pending.pop(command_id, None)

    async def feed(self, frame: Dict[str, Any]) -> None:
        """Process one frame received from the surface."""
        frame_type = frame.get("type")

        if frame_type == "navigating":
            request = NavigationRequest(url=str(frame.get("url") or ""))
            try:
                self._navigation_handler(request)
            except Exception:
                logger.exception("surface.feed: navigation handler failed for %s", request.url)
            await self._send({"type": "navigation", "id": frame.get("id"), "cancel": request.cancel})
            return

        if frame_type == "result":
            self._resolve(frame)
            return

        logger.debug("surface.feed: ignoring frame type %r", frame_type)

    def _resolve(self, frame: Dict[str, Any]) -> None:
        command_id = frame.get("id")
        future = self._pending.get(command_id) if isinstance(command_id, int) else None
        if future is None or future.done():
            logger.debug("surface.result: no pending command for id %r", command_id)
            return

        error = frame.get("error")
        if error:
            future.set_exception(CommandFailure(f"command #{command_id}", str(error)))
            return

        value = frame.get("value")
        if value is None or isinstance(value, str):
            future.set_result(value)
        else:
            future.set_result(json.dumps(value))

    def close(self) -> None:
        """Fail every in-flight command; later commands raise immediately."""
        self._closed = True
        for command_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(SurfaceNotAttachedError(f"command #{command_id}"))
        self._pending.clear()


__all__ = [
    "ContentSurface",
    "WebSocketSurface",
    "SurfaceSlot",
    "NavigationHandler",
    "STOP_CAMERA",
    "GET_LAST_MATCH_IMAGE",
    "REGISTER_NO_VECTOR",
    "js_string",
    "register_external_image",
    "register_external_image_from_base64",
    "register_external_image_no_vector",
]
