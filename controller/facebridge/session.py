"""One face capture session driven over the command and callback channels."""
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Optional, Set, Tuple

from .config import Settings, get_settings
from .errors import CommandFailure
from .state import (
    BridgeEvent,
    CallbackEvent,
    CallbackTag,
    DetectionOutcome,
    IdentityKind,
    IdentityMaterial,
    SessionPhase,
    SessionResult,
)
from .store import (
    HAS_IMAGE_KEY,
    HAS_IMAGE_SCANNED,
    HAS_VECTOR_KEY,
    HAS_VECTOR_NO,
    HAS_VECTOR_YES,
    LIVE_IMAGE_KEY,
    PreferenceStore,
)
from .surface.callbacks import NavigationRequest, is_callback_url, parse_callback_url
from .surface.commands import (
    GET_LAST_MATCH_IMAGE,
    STOP_CAMERA,
    ContentSurface,
    register_external_image,
    register_external_image_from_base64,
    register_external_image_no_vector,
)

logger = logging.getLogger(__name__)

_STOP_CAMERA_TASK = "capture-stop-camera"

ClosedCallback = Callable[[SessionResult], Awaitable[None]]
EventCallback = Callable[[BridgeEvent], None]


def select_registration(identity: IdentityMaterial, label: str) -> Tuple[str, str]:
    """Return ``(hasvectorimage flag, registration script)`` for the identity."""
    kind = identity.kind
    if kind is IdentityKind.FEATURE_VECTOR:
        return HAS_VECTOR_YES, register_external_image(identity.reference_vector, label)
    if kind is IdentityKind.RAW_IMAGE:
        clean = identity.reference_image.replace("\n", "").replace("\r", "")
        return HAS_VECTOR_YES, register_external_image_from_base64(clean, label)
    return HAS_VECTOR_NO, register_external_image_no_vector()


def detection_outcome(event: CallbackEvent, detect_only_name: str = "DetectedFace") -> DetectionOutcome:
    """Map a terminal callback onto the outcome reported to the owner."""
    if not event.tag.is_terminal:
        raise ValueError(f"{event.tag.value} is not a terminal event")

    try:
        confidence: Optional[float] = float(event.confidence)
    except ValueError:
        confidence = None
    if confidence is not None and not math.isfinite(confidence):
        confidence = None

    if event.tag is CallbackTag.MATCH:
        return DetectionOutcome(event.is_match, event.has_image, event.name, confidence)
    if event.tag is CallbackTag.NOTMATCH:
        # isMatch in the payload is never trusted here.
        return DetectionOutcome(False, event.has_image, event.name, confidence)
    return DetectionOutcome(False, event.has_image, event.name or detect_only_name, confidence)


def strip_data_uri(payload: str) -> str:
    """Drop a ``data:...;base64,`` prefix, up to and including the first comma."""
    if "," in payload:
        return payload.split(",", 1)[1]
    return payload


class FaceCaptureSession:
    """Drives one capture from ``ready`` to closure.

    ``handle_navigation`` is the interception point and runs synchronously on
    the surface loop. Registration and closure are submitted as separate
    tasks; both may be requested from another thread.
    """

    def __init__(
        self,
        surface: ContentSurface,
        store: PreferenceStore,
        identity: IdentityMaterial,
        *,
        on_closed: ClosedCallback,
        on_event: Optional[EventCallback] = None,
        settings: Optional[Settings] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.surface = surface
        self.store = store
        self.identity = identity
        self._on_closed = on_closed
        self._on_event = on_event
        self._loop = loop or asyncio.get_running_loop()
        self._phase = SessionPhase.OPENED
        self._closing = False
        self._result = SessionResult()
        self._tasks: Set[asyncio.Task[Any]] = set()

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def result(self) -> SessionResult:
        return self._result

    # ------------------------------------------------------------------
    # Callback channel
    # ------------------------------------------------------------------

    def handle_navigation(self, request: NavigationRequest) -> None:
        scheme = self.settings.callback_scheme
        if not is_callback_url(request.url, scheme):
            return

        # Callback navigations never load, even when they fail to parse.
        request.cancel = True
        try:
            event = parse_callback_url(request.url, scheme)
            self._dispatch(event)
        except Exception as exc:
            logger.warning("callback.parse: dropped %s (%s)", request.url, exc)

    def _dispatch(self, event: CallbackEvent) -> None:
        if self._phase is SessionPhase.ENDED or self._closing:
            logger.debug("callback.%s: session already ended, ignoring", event.raw_tag)
            return

        if event.tag is CallbackTag.READY:
            if self._phase is not SessionPhase.OPENED:
                logger.debug("callback.ready: repeated ready ignored")
                return
            logger.info("callback.ready: content surface ready")
            flag, script = select_registration(self.identity, self.settings.reference_label)
            self.store.set(HAS_VECTOR_KEY, flag)
            self._set_phase(SessionPhase.REGISTERED, {"identity": self.identity.kind.value})
            self._submit(self._run_command(script), name="capture-register")
            return

        if event.tag is CallbackTag.ERROR:
            logger.warning("callback.error: surface reported %s", event.message)
            self._emit("surface_error", {"message": event.message})
            return

        if event.tag.is_terminal:
            if self._phase is not SessionPhase.REGISTERED:
                logger.debug("callback.%s: unexpected in phase %s", event.raw_tag, self._phase.value)
                return
            outcome = detection_outcome(event, self.settings.detect_only_name)
            if event.tag is CallbackTag.DETECTONLY:
                # The surface may fall back to detect-only after an image registration.
                self.store.set(HAS_VECTOR_KEY, HAS_VECTOR_NO)
            self._result.outcome = outcome
            logger.info(
                "callback.%s: name=%r matched=%s has_image=%s",
                event.raw_tag,
                outcome.display_name,
                outcome.matched,
                outcome.has_captured_image,
            )
            self._set_phase(
                SessionPhase.COLLECTING,
                {"event": event.raw_tag, "matched": outcome.matched, "name": outcome.display_name},
            )
            self._submit(self._collect_result(outcome), name="capture-collect")
            return

        logger.debug("callback.%s: unknown tag ignored", event.raw_tag)

    # ------------------------------------------------------------------
    # Result collection and teardown
    # ------------------------------------------------------------------

    async def _collect_result(self, outcome: DetectionOutcome) -> None:
        self.store.set(HAS_IMAGE_KEY, HAS_IMAGE_SCANNED)
        if outcome.has_captured_image:
            image = await self._fetch_last_match_image()
            if self._closing or self._phase is SessionPhase.ENDED:
                logger.info("collect: session closed while fetching the captured frame, discarding it")
                return
            bare = strip_data_uri(image) if image else ""
            if bare:
                self.store.set(LIVE_IMAGE_KEY, bare)
                self._result.captured_image_base64 = bare
                self._result.was_captured = outcome.matched
            else:
                logger.info("collect: surface returned no captured frame")
        self.request_close("result")

    async def _fetch_last_match_image(self) -> Optional[str]:
        try:
            return await self.surface.evaluate(GET_LAST_MATCH_IMAGE)
        except Exception as exc:
            logger.warning("collect: error getting image: %s", exc)
            return None

    async def _run_command(self, script: str) -> None:
        try:
            await self.surface.evaluate(script)
        except CommandFailure as exc:
            logger.warning("surface.command: %s", exc)

    def request_close(self, reason: str) -> None:
        """Ask the host loop to close the capture page."""
        self._submit(self.close(reason), name="capture-close")

    async def close(self, reason: str = "closed") -> None:
        """Release the camera (best effort) and end the session once."""
        if self._closing or self._phase is SessionPhase.ENDED:
            return
        self._closing = True
        self._submit(self._stop_camera(), name=_STOP_CAMERA_TASK)

        self._set_phase(SessionPhase.ENDED, {"reason": reason, **self._result.to_dict()})
        logger.info("Session ended (%s): was_captured=%s", reason, self._result.was_captured)
        try:
            await self._on_closed(self._result)
        except Exception:
            logger.exception("Session owner failed to accept result")

    async def _stop_camera(self) -> None:
        try:
            await self.surface.evaluate(STOP_CAMERA)
        except Exception as exc:
            logger.debug("teardown: stopCamera ignored (%s)", exc)

    async def wait_idle(self, *, include_teardown: bool = True) -> None:
        """Wait until every submitted task, including ones they spawn, has finished.

        With ``include_teardown=False`` the best-effort ``stopCamera()`` task is
        left running in the background.
        """
        while True:
            pending = [
                task
                for task in self._tasks
                if include_teardown or task.get_name() != _STOP_CAMERA_TASK
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _submit(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._spawn(coro, name)
        else:
            self._loop.call_soon_threadsafe(self._spawn, coro, name)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = self._loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def _set_phase(self, phase: SessionPhase, data: Optional[dict] = None) -> None:
        self._phase = phase
        self._emit("state", data or {})

    def _emit(self, event_type: str, data: dict, error: Optional[str] = None) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(BridgeEvent(type=event_type, data=data, phase=self._phase, error=error))
        except Exception as exc:
            logger.warning("Failed to publish session event: %s", exc)


__all__ = [
    "FaceCaptureSession",
    "select_registration",
    "detection_outcome",
    "strip_data_uri",
]
