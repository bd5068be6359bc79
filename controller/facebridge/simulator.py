#!/usr/bin/env python3
# Scripted stand-in for the face capture page, for exercising the bridge without a browser.

from __future__ import annotations

import argparse
import asyncio
import itertools
import json
import logging
import sys
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import websockets

log = logging.getLogger("facebridge.simulator")

SAMPLE_IMAGE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="

SCENARIOS = ("match", "nomatch-flagged", "notmatch", "detectonly", "error-then-match")


def callback_url(scheme: str, tag: str, **fields: str) -> str:
    query = urlencode(fields)
    return f"{scheme}://{tag}?{query}" if query else f"{scheme}://{tag}"


def scenario_callbacks(name: str, scheme: str) -> List[str]:
    if name == "match":
        return [callback_url(scheme, "match", name="Reference", confidence="0.93", isMatch="true", hasImage="true")]
    if name == "nomatch-flagged":
        return [callback_url(scheme, "match", name="Reference", confidence="0.31", isMatch="false", hasImage="true")]
    if name == "notmatch":
        return [callback_url(scheme, "notmatch", name="Reference", confidence="0.12", hasImage="true")]
    if name == "detectonly":
        return [callback_url(scheme, "detectonly", confidence="0.88", hasImage="true")]
    if name == "error-then-match":
        return [
            callback_url(scheme, "error", message="model warming up"),
            callback_url(scheme, "match", name="Reference", confidence="0.90", isMatch="true", hasImage="true"),
        ]
    raise ValueError(f"unknown scenario {name!r}")


class SimulatedSurface:
    """Answers bridge commands and emits callbacks for one scenario."""

    def __init__(self, conn: Any, *, scenario: str, scheme: str, image: Optional[str]) -> None:
        self.conn = conn
        self.scenario = scenario
        self.scheme = scheme
        self.image = image
        self._nav_ids = itertools.count(1)
        self.cancelled: Dict[int, bool] = {}

    async def navigate(self, url: str) -> None:
        nav_id = next(self._nav_ids)
        log.info("navigating #%d %s", nav_id, url)
        await self.conn.send(json.dumps({"type": "navigating", "id": nav_id, "url": url}))

    async def reply(self, command_id: Any, value: Optional[str] = None, error: Optional[str] = None) -> None:
        frame: Dict[str, Any] = {"type": "result", "id": command_id, "value": value}
        if error:
            frame["error"] = error
        await self.conn.send(json.dumps(frame))

    async def handle(self, frame: Dict[str, Any]) -> bool:
        """Handle one bridge frame; returns False once the page has been torn down."""
        frame_type = frame.get("type")

        if frame_type == "load":
            await self.navigate(str(frame.get("url")))
            await self.navigate(callback_url(self.scheme, "ready"))
            return True

        if frame_type == "navigation":
            self.cancelled[frame.get("id")] = bool(frame.get("cancel"))
            log.info("navigation #%s cancel=%s", frame.get("id"), frame.get("cancel"))
            return True

        if frame_type != "evaluate":
            log.debug("ignoring frame %r", frame_type)
            return True

        script = str(frame.get("script") or "")
        command_id = frame.get("id")
        log.info("evaluate #%s %s", command_id, script[:80])

        if script.startswith("registerExternalImage"):
            await self.reply(command_id)
            for url in scenario_callbacks(self.scenario, self.scheme):
                await self.navigate(url)
            return True
        if script == "getLastMatchImage()":
            await self.reply(command_id, self.image)
            return True
        if script == "stopCamera()":
            await self.reply(command_id)
            return False

        await self.reply(command_id, error=f"ReferenceError: {script} is not defined")
        return True


async def run(url: str, scenario: str, scheme: str, image: Optional[str]) -> int:
    log.info("Connecting to bridge surface socket %s", url)
    try:
        async with websockets.connect(url, ping_interval=None, ping_timeout=None) as conn:
            surface = SimulatedSurface(conn, scenario=scenario, scheme=scheme, image=image)
            async for message in conn:
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    log.warning("Invalid JSON from bridge: %s", message)
                    continue
                if not await surface.handle(frame):
                    log.info("Camera released, closing simulated page")
                    break
    except (OSError, websockets.WebSocketException) as exc:
        log.error("Bridge connection failed: %s", exc)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Simulated face capture page for the facebridge controller")
    ap.add_argument("--url", default="ws://127.0.0.1:5000/ws/surface")
    ap.add_argument("--scenario", choices=SCENARIOS, default="match")
    ap.add_argument("--scheme", default="callback")
    ap.add_argument("--no-image", action="store_true", help="getLastMatchImage() returns null")
    ap.add_argument("--log", default="INFO")
    args = ap.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    image = None if args.no_image else SAMPLE_IMAGE
    try:
        return asyncio.run(run(args.url, args.scenario, args.scheme, image))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
