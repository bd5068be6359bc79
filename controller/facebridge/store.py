"""Durable key/value preferences shared with the page that follows a capture."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

HAS_VECTOR_KEY = "hasvectorimage"
HAS_IMAGE_KEY = "hasimage"
LIVE_IMAGE_KEY = "liveUserImg"

HAS_VECTOR_YES = "Y"
HAS_VECTOR_NO = "N"
HAS_IMAGE_SCANNED = "scanned"


class PreferenceStore:
    """String-only preference storage."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def snapshot(self) -> Dict[str, str]:
        raise NotImplementedError


class MemoryPreferenceStore(PreferenceStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def snapshot(self) -> Dict[str, str]:
        return dict(self._values)


class JsonFilePreferenceStore(PreferenceStore):
    """Preferences persisted as one JSON object, rewritten atomically on every set."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._values = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("store.load: ignoring unreadable preferences %s (%s)", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("store.load: preferences root is not an object, starting empty")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".prefs-", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._values, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except Exception:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
            self._flush()

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)


__all__ = [
    "PreferenceStore",
    "MemoryPreferenceStore",
    "JsonFilePreferenceStore",
    "HAS_VECTOR_KEY",
    "HAS_IMAGE_KEY",
    "LIVE_IMAGE_KEY",
    "HAS_VECTOR_YES",
    "HAS_VECTOR_NO",
    "HAS_IMAGE_SCANNED",
]
