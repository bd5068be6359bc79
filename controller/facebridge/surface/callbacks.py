"""Callback channel: surface-to-host events carried as pseudo-navigations.

The content surface cannot call into the host directly. Instead it navigates
to ``<scheme>://<tag>?key=value&...``; the host inspects every navigation
before it proceeds, cancels the ones that carry the callback scheme and
decodes them into :class:`~facebridge.state.CallbackEvent` values.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict
from urllib.parse import parse_qsl

from ..errors import CallbackParseError
from ..state import CallbackEvent, CallbackTag

logger = logging.getLogger(__name__)


@dataclass
class NavigationRequest:
    """One outgoing navigation attempt; set ``cancel`` to stop it loading."""

    url: str
    cancel: bool = False


def callback_prefix(scheme: str) -> str:
    return f"{scheme}://"


def is_callback_url(url: str, scheme: str) -> bool:
    return isinstance(url, str) and url.startswith(callback_prefix(scheme))


def parse_query(query: str) -> Dict[str, str]:
    """Decode a query string into a case-sensitive mapping.

    Repeated keys are joined with commas. Anything undecodable yields an
    empty mapping so callers fall back to field defaults.
    """
    fields: Dict[str, str] = {}
    if not query:
        return fields
    try:
        pairs = parse_qsl(query, keep_blank_values=True, errors="replace")
    except ValueError as exc:
        logger.warning("callback.parse_query: malformed query %r (%s)", query, exc)
        return {}
    for key, value in pairs:
        if key in fields:
            fields[key] = f"{fields[key]},{value}"
        else:
            fields[key] = value
    return fields


def parse_callback_url(url: str, scheme: str) -> CallbackEvent:
    """Decode ``<scheme>://<tag>?<query>`` into a :class:`CallbackEvent`."""
    prefix = callback_prefix(scheme)
    if not is_callback_url(url, scheme):
        raise CallbackParseError("Not a callback URL", log_message=f"not a {prefix} url: {url!r}")

    remainder = url[len(prefix):]
    remainder, _, _fragment = remainder.partition("#")
    target, _, query = remainder.partition("?")
    raw_tag = target.rstrip("/").lower()
    if not raw_tag:
        raise CallbackParseError("Callback without event tag", log_message=f"empty tag in {url!r}")

    return CallbackEvent(tag=CallbackTag.parse(raw_tag), raw_tag=raw_tag, fields=parse_query(query))


__all__ = ["NavigationRequest", "callback_prefix", "is_callback_url", "parse_query", "parse_callback_url"]
