"""Shared session state definitions for the face capture bridge."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


class SessionPhase(str, enum.Enum):
    """
    Session phases in chronological order:

    1. OPENED      - Surface loading, waiting for the ``ready`` callback
    2. REGISTERED  - Reference identity handed to the surface, detecting
    3. COLLECTING  - Terminal callback received, pulling the captured frame
    4. ENDED       - Page closed; result available to the owner
    """
    OPENED = "opened"
    REGISTERED = "registered"
    COLLECTING = "collecting"
    ENDED = "ended"


class IdentityKind(str, enum.Enum):
    NONE = "none"
    RAW_IMAGE = "raw_image"
    FEATURE_VECTOR = "feature_vector"


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


@dataclass(frozen=True)
class IdentityMaterial:
    """Reference identity handed in at session start.

    ``kind`` follows a fixed precedence: a feature vector wins over a raw
    image, and with neither the session runs in detect-only mode.
    """

    reference_image: str = ""
    reference_vector: str = ""

    @property
    def kind(self) -> IdentityKind:
        if _present(self.reference_vector):
            return IdentityKind.FEATURE_VECTOR
        if _present(self.reference_image):
            return IdentityKind.RAW_IMAGE
        return IdentityKind.NONE


class CallbackTag(str, enum.Enum):
    READY = "ready"
    MATCH = "match"
    NOTMATCH = "notmatch"
    DETECTONLY = "detectonly"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str) -> "CallbackTag":
        try:
            tag = cls(raw)
        except ValueError:
            return cls.UNKNOWN
        return tag

    @property
    def is_terminal(self) -> bool:
        return self in (CallbackTag.MATCH, CallbackTag.NOTMATCH, CallbackTag.DETECTONLY)


@dataclass(frozen=True)
class CallbackEvent:
    """Typed view of one intercepted ``<scheme>://<tag>?<query>`` callback."""

    tag: CallbackTag
    raw_tag: str
    fields: Mapping[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str = "") -> str:
        return self.fields.get(key, default)

    @property
    def name(self) -> str:
        return self.get("name")

    @property
    def confidence(self) -> str:
        return self.get("confidence", "0")

    @property
    def is_match(self) -> bool:
        return self.get("isMatch") == "true"

    @property
    def has_image(self) -> bool:
        return self.get("hasImage") == "true"

    @property
    def message(self) -> str:
        return self.get("message")


@dataclass(frozen=True)
class DetectionOutcome:
    matched: bool
    has_captured_image: bool
    display_name: str
    confidence: Optional[float] = None


@dataclass
class SessionResult:
    """Outbox handed to the session owner when the capture page closes."""

    captured_image_base64: Optional[str] = None
    was_captured: bool = False
    outcome: Optional[DetectionOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        outcome = self.outcome
        return {
            "captured_image_base64": self.captured_image_base64,
            "was_captured": self.was_captured,
            "outcome": None
            if outcome is None
            else {
                "matched": outcome.matched,
                "has_captured_image": outcome.has_captured_image,
                "display_name": outcome.display_name,
                "confidence": outcome.confidence,
            },
        }


@dataclass
class BridgeEvent:
    """Event payload distributed to host UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: Optional[SessionPhase]
    error: Optional[str] = None


__all__ = [
    "SessionPhase",
    "IdentityKind",
    "IdentityMaterial",
    "CallbackTag",
    "CallbackEvent",
    "DetectionOutcome",
    "SessionResult",
    "BridgeEvent",
]
