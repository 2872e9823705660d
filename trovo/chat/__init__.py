"""
Trovo chat over WebSocket with automatic reconnection.
"""

from trovo.chat.exceptions import (
    ChatError,
    ConnectError,
    DecodeError,
    HandshakeError,
    LinkClosedError,
    LinkError,
    StaleConnectionError,
)
from trovo.chat.models import ChatMessage, ChatMessageType, ChatToken, Emote
from trovo.chat.protocol import (
    Ack,
    ChatBatch,
    ErrorFrame,
    Pong,
    UnknownFrame,
    decode_frame,
    encode_auth,
    encode_join,
    encode_ping,
)
from trovo.chat.reconnect import ReconnectionManager
from trovo.chat.session import ChatMessageStream, ChatSession, ChatState
from trovo.chat.websocket import TransportLink

__all__ = [
    "ChatError",
    "ConnectError",
    "DecodeError",
    "HandshakeError",
    "LinkClosedError",
    "LinkError",
    "StaleConnectionError",
    "ChatMessage",
    "ChatMessageType",
    "ChatToken",
    "Emote",
    "Ack",
    "ChatBatch",
    "ErrorFrame",
    "Pong",
    "UnknownFrame",
    "decode_frame",
    "encode_auth",
    "encode_join",
    "encode_ping",
    "ReconnectionManager",
    "ChatMessageStream",
    "ChatSession",
    "ChatState",
    "TransportLink",
]
