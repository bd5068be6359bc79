"""Session ownership for the face capture bridge."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from typing import List, Optional

from .config import Settings, get_settings
from .errors import SessionBusyError
from .session import FaceCaptureSession
from .state import BridgeEvent, IdentityMaterial, SessionPhase, SessionResult
from .store import JsonFilePreferenceStore, PreferenceStore
from .surface.callbacks import NavigationRequest, is_callback_url
from .surface.commands import ContentSurface, SurfaceSlot

logger = logging.getLogger(__name__)


class SessionManager:
    """Coordinates the attached content surface, the active session and UI updates."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        store: Optional[PreferenceStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or JsonFilePreferenceStore(self.settings.store_path)
        self._surface = SurfaceSlot()
        self._session: Optional[FaceCaptureSession] = None
        self._last_result: Optional[SessionResult] = None
        self._ui_subscribers: List[asyncio.Queue[BridgeEvent]] = []

    @property
    def phase(self) -> Optional[SessionPhase]:
        return self._session.phase if self._session else None

    @property
    def session(self) -> Optional[FaceCaptureSession]:
        return self._session

    @property
    def surface_attached(self) -> bool:
        return self._surface.attached

    @property
    def last_result(self) -> Optional[SessionResult]:
        return self._last_result

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def start_session(self, reference_image: str = "", reference_vector: str = "") -> FaceCaptureSession:
        if self._session is not None and self._session.phase is not SessionPhase.ENDED:
            raise SessionBusyError("A capture session is already running")

        identity = IdentityMaterial(reference_image=reference_image or "", reference_vector=reference_vector or "")
        session = FaceCaptureSession(
            self._surface,
            self.store,
            identity,
            on_closed=self._on_session_closed,
            on_event=self._broadcast,
            settings=self.settings,
        )
        self._session = session
        logger.info("Capture session opened (identity=%s)", identity.kind.value)
        self._broadcast(
            BridgeEvent(type="session_opened", data={"identity": identity.kind.value}, phase=session.phase)
        )
        if self._surface.attached:
            await self._load_content()
        else:
            logger.info("No content surface attached yet; session waits for one")
        return session

    async def end_session(self, reason: str = "cancelled", *, wait_teardown: bool = False) -> Optional[SessionResult]:
        """Tear down the active session, if any, and return its result.

        ``stopCamera()`` is only awaited when ``wait_teardown`` is set.
        """
        session = self._session
        if session is None:
            return None
        await session.close(reason)
        await session.wait_idle(include_teardown=wait_teardown)
        return session.result

    async def stop(self) -> None:
        logger.info("Stopping session manager")
        try:
            await self.end_session("shutdown", wait_teardown=True)
        except Exception as e:
            logger.warning("Error ending session during shutdown: %s", e)
        logger.info("Session manager stopped")

    async def _on_session_closed(self, result: SessionResult) -> None:
        self._last_result = result
        if self._session is not None and self._session.result is result:
            self._session = None
        self._broadcast(BridgeEvent(type="session_closed", data=result.to_dict(), phase=SessionPhase.ENDED))

    # ------------------------------------------------------------------
    # Content surface
    # ------------------------------------------------------------------

    async def attach_surface(self, surface: ContentSurface) -> None:
        if self._surface.current is not None:
            logger.warning("Replacing previously attached content surface")
        self._surface.current = surface
        logger.info("Content surface attached")
        self._broadcast(BridgeEvent(type="surface", data={"attached": True}, phase=self.phase))
        if self._session is not None:
            await self._load_content()

    async def detach_surface(self, surface: ContentSurface) -> None:
        if self._surface.current is not surface:
            return
        self._surface.current = None
        logger.info("Content surface detached")
        self._broadcast(BridgeEvent(type="surface", data={"attached": False}, phase=self.phase))
        if self._session is not None:
            await self.end_session("surface_detached")

    def handle_navigation(self, request: NavigationRequest) -> None:
        """Interception point for every navigation the surface attempts."""
        if self._session is not None:
            self._session.handle_navigation(request)
            return
        if is_callback_url(request.url, self.settings.callback_scheme):
            request.cancel = True
            logger.debug("callback: no active session, dropped %s", request.url)

    async def _load_content(self) -> None:
        try:
            await self._surface.load(self.settings.content_entry)
        except Exception as exc:
            logger.warning("Failed to load content surface entry: %s", exc)

    # ------------------------------------------------------------------
    # UI subscribers
    # ------------------------------------------------------------------

    def register_ui(self) -> asyncio.Queue[BridgeEvent]:
        queue: asyncio.Queue[BridgeEvent] = asyncio.Queue(maxsize=self.settings.surface.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[BridgeEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def _broadcast(self, event: BridgeEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)


__all__ = ["SessionManager"]
