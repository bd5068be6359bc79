from __future__ import annotations

import asyncio

import pytest

from facebridge.errors import CommandFailure, SurfaceNotAttachedError
from facebridge.surface.callbacks import NavigationRequest
from facebridge.surface.commands import (
    SurfaceSlot,
    WebSocketSurface,
    js_string,
    register_external_image,
    register_external_image_from_base64,
    register_external_image_no_vector,
)


def test_command_builders():
    assert register_external_image("[0.5, -0.25]", "Reference") == "registerExternalImage([0.5, -0.25], 'Reference')"
    assert (
        register_external_image_from_base64("QUJD", "Reference")
        == "registerExternalImageFromBase64('QUJD', 'Reference')"
    )
    assert register_external_image_no_vector() == "registerExternalImageNoVector()"
    assert js_string("it's") == "'it\\'s'"


def _surface(frames, handler=None, timeout=1.0):
    async def send(frame):
        frames.append(frame)

    return WebSocketSurface(send, handler or (lambda request: None), command_timeout=timeout)


def test_evaluate_resolves_with_result_frame():
    frames = []

    async def _scenario():
        surface = _surface(frames)
        pending = asyncio.create_task(surface.evaluate("getLastMatchImage()"))
        await asyncio.sleep(0)
        await surface.feed({"type": "result", "id": frames[0]["id"], "value": "data:image/png;base64,AA"})
        return await pending

    assert asyncio.run(_scenario()) == "data:image/png;base64,AA"
    assert frames[0] == {"type": "evaluate", "id": 1, "script": "getLastMatchImage()"}


def test_evaluate_error_frame_raises_command_failure():
    frames = []

    async def _scenario():
        surface = _surface(frames)
        pending = asyncio.create_task(surface.evaluate("stopCamera()"))
        await asyncio.sleep(0)
        await surface.feed({"type": "result", "id": 1, "error": "stopCamera is not defined"})
        await pending

    with pytest.raises(CommandFailure):
        asyncio.run(_scenario())


def test_evaluate_times_out():
    async def _scenario():
        await _surface([], timeout=0.01).evaluate("getLastMatchImage()")

    with pytest.raises(CommandFailure):
        asyncio.run(_scenario())


def test_close_fails_pending_and_future_commands():
    async def _scenario():
        surface = _surface([])
        pending = asyncio.create_task(surface.evaluate("getLastMatchImage()"))
        await asyncio.sleep(0)
        surface.close()
        with pytest.raises(SurfaceNotAttachedError):
            await pending
        with pytest.raises(SurfaceNotAttachedError):
            await surface.evaluate("stopCamera()")

    asyncio.run(_scenario())


def test_navigating_frame_is_answered_with_decision():
    frames = []
    seen = []

    def handler(request: NavigationRequest) -> None:
        seen.append(request.url)
        request.cancel = request.url.startswith("callback://")

    async def _scenario():
        surface = _surface(frames, handler)
        await surface.feed({"type": "navigating", "id": 7, "url": "callback://ready"})
        await surface.feed({"type": "navigating", "id": 8, "url": "wwwroot/index.html"})

    asyncio.run(_scenario())
    assert seen == ["callback://ready", "wwwroot/index.html"]
    assert frames == [
        {"type": "navigation", "id": 7, "cancel": True},
        {"type": "navigation", "id": 8, "cancel": False},
    ]


def test_unsolicited_result_is_ignored():
    async def _scenario():
        await _surface([]).feed({"type": "result", "id": 99, "value": "x"})

    asyncio.run(_scenario())


def test_empty_slot_raises():
    async def _scenario():
        await SurfaceSlot().evaluate("stopCamera()")

    with pytest.raises(SurfaceNotAttachedError):
        asyncio.run(_scenario())
