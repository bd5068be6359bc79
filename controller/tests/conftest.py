from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from facebridge.config import Settings
from facebridge.store import MemoryPreferenceStore
from facebridge.surface.commands import ContentSurface


class FakeSurface(ContentSurface):
    """Records every evaluated script; answers from ``responses`` or raises from ``failures``."""

    def __init__(
        self,
        responses: Optional[Dict[str, Optional[str]]] = None,
        failures: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.scripts: List[str] = []
        self.loaded: List[str] = []
        self.responses = dict(responses or {})
        self.failures = dict(failures or {})

    async def evaluate(self, script: str) -> Optional[str]:
        self.scripts.append(script)
        if script in self.failures:
            raise self.failures[script]
        return self.responses.get(script)

    async def load(self, url: str) -> None:
        self.loaded.append(url)


class HeldSurface(FakeSurface):
    """Blocks ``held`` scripts until ``release`` is set."""

    def __init__(self, held, responses: Optional[Dict[str, Optional[str]]] = None) -> None:
        super().__init__(responses=responses)
        self.held = set(held)
        self.release = asyncio.Event()

    async def evaluate(self, script: str) -> Optional[str]:
        self.scripts.append(script)
        if script in self.held:
            await self.release.wait()
        return self.responses.get(script)


class RecordingStore(MemoryPreferenceStore):
    def __init__(self) -> None:
        super().__init__()
        self.writes: List[tuple[str, str]] = []

    def set(self, key: str, value: str) -> None:
        self.writes.append((key, value))
        super().set(key, value)

    def writes_for(self, key: str) -> List[str]:
        return [value for written_key, value in self.writes if written_key == key]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        store_path=tmp_path / "preferences.json",
        log_directory=tmp_path / "logs",
    )


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()
