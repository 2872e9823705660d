"""
Custom exceptions for the Trovo chat client.
"""

from typing import Any, Optional

from trovo.errors import TrovoError


class ChatError(TrovoError):
    """Base exception for all chat errors."""
    pass


class ConnectError(ChatError):
    """Failed to establish WebSocket connection."""
    pass


class LinkError(ChatError):
    """WebSocket I/O failed mid-session."""
    pass


class LinkClosedError(LinkError):
    """WebSocket connection was closed."""

    def __init__(self, message: str = "socket was closed", code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class StaleConnectionError(LinkError):
    """No frame received within the staleness window."""
    pass


class HandshakeError(ChatError):
    """Chat server rejected or ignored an AUTH/JOIN request."""

    def __init__(self, message: str, code: Optional[Any] = None):
        super().__init__(message)
        self.code = code


class DecodeError(ChatError):
    """A single frame or chat message could not be decoded."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw
