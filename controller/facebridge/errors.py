"""Exception types raised across the bridge."""
from __future__ import annotations

from typing import Optional


class BridgeError(RuntimeError):
    """Base class for recoverable bridge failures."""

    def __init__(self, user_message: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message


class CallbackParseError(BridgeError):
    """A callback URL could not be decoded into an event."""


class CommandFailure(BridgeError):
    """A command evaluated on the content surface raised, timed out or was dropped."""

    def __init__(self, script: str, reason: str) -> None:
        super().__init__(f"Command failed: {reason}", log_message=f"{script}: {reason}")
        self.script = script
        self.reason = reason


class SurfaceNotAttachedError(CommandFailure):
    """No content surface is connected to receive commands."""

    def __init__(self, script: str) -> None:
        super().__init__(script, "content surface not attached")


class SessionBusyError(BridgeError):
    """A capture session is already active."""


__all__ = [
    "BridgeError",
    "CallbackParseError",
    "CommandFailure",
    "SurfaceNotAttachedError",
    "SessionBusyError",
]
