"""Host/content-surface channels."""
from .callbacks import NavigationRequest, is_callback_url, parse_callback_url
from .commands import ContentSurface, SurfaceSlot, WebSocketSurface

__all__ = [
    "NavigationRequest",
    "is_callback_url",
    "parse_callback_url",
    "ContentSurface",
    "WebSocketSurface",
    "SurfaceSlot",
]
