from __future__ import annotations

import asyncio
import json
from typing import List

import pytest

from facebridge.simulator import SAMPLE_IMAGE, SCENARIOS, SimulatedSurface, callback_url, scenario_callbacks
from facebridge.surface.callbacks import parse_callback_url


class FakeConn:
    def __init__(self) -> None:
        self.sent: List[dict] = []

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))


@pytest.mark.parametrize("name", SCENARIOS)
def test_scenarios_emit_parseable_callbacks(name: str) -> None:
    urls = scenario_callbacks(name, "callback")
    events = [parse_callback_url(url, "callback") for url in urls]
    assert events[-1].tag.is_terminal


def test_callback_url_without_fields() -> None:
    assert callback_url("callback", "ready") == "callback://ready"


def test_simulated_page_walks_through_a_session() -> None:
    conn = FakeConn()
    page = SimulatedSurface(conn, scenario="match", scheme="callback", image=SAMPLE_IMAGE)

    async def _scenario():
        assert await page.handle({"type": "load", "url": "wwwroot/index.html"})
        assert await page.handle({"type": "evaluate", "id": 1, "script": "registerExternalImageNoVector()"})
        assert await page.handle({"type": "evaluate", "id": 2, "script": "getLastMatchImage()"})
        assert await page.handle({"type": "evaluate", "id": 3, "script": "unknownFn()"})
        return await page.handle({"type": "evaluate", "id": 4, "script": "stopCamera()"})

    still_open = asyncio.run(_scenario())

    assert still_open is False
    navigations = [frame["url"] for frame in conn.sent if frame["type"] == "navigating"]
    assert navigations[:2] == ["wwwroot/index.html", "callback://ready"]
    assert navigations[2].startswith("callback://match?")
    results = {frame["id"]: frame for frame in conn.sent if frame["type"] == "result"}
    assert results[2]["value"] == SAMPLE_IMAGE
    assert "error" in results[3]
