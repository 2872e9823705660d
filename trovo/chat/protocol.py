"""
Wire format of the Trovo chat socket.

Every frame is a JSON object whose ``type`` field says what it is. We send
``AUTH``, ``JOIN`` and ``PING`` and receive ``RESPONSE``, ``CHAT`` and
``PONG``. Anything else decodes to :class:`UnknownFrame` so that new server
frame types never break a session.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from trovo.chat.exceptions import DecodeError
from trovo.chat.models import ChatMessage, ChatToken

logger = logging.getLogger(__name__)

AUTH = "AUTH"
JOIN = "JOIN"
PING = "PING"
RESPONSE = "RESPONSE"
CHAT = "CHAT"
PONG = "PONG"


@dataclass(frozen=True)
class Ack:
    """Successful response to an AUTH or JOIN request."""
    nonce: Optional[str]


@dataclass(frozen=True)
class ErrorFrame:
    """Error response from the chat server."""
    nonce: Optional[str]
    code: Optional[Any]
    message: str


@dataclass(frozen=True)
class Pong:
    """Response to a PING. ``gap`` is the server-advised ping interval in seconds."""
    nonce: Optional[str]
    gap: Optional[int] = None


@dataclass(frozen=True)
class ChatBatch:
    """
    One CHAT frame.

    ``messages`` keeps the server's order; entries that failed to decode are
    :class:`DecodeError` instances in the slot of the original message.
    """
    eid: Optional[str]
    channel_id: Optional[str]
    messages: list[Union[ChatMessage, DecodeError]] = field(default_factory=list)


@dataclass(frozen=True)
class UnknownFrame:
    """A frame type this client doesn't know about."""
    type: Optional[str]
    payload: dict[str, Any]


InboundFrame = Union[Ack, ErrorFrame, Pong, ChatBatch, UnknownFrame]


def _dumps(frame: dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)


def encode_auth(nonce: str, token: ChatToken) -> str:
    return _dumps({"type": AUTH, "nonce": nonce, "data": {"token": token.token}})


def encode_join(nonce: str, channel_id: str) -> str:
    return _dumps({"type": JOIN, "nonce": nonce, "data": {"channel_id": channel_id}})


def encode_ping(nonce: str) -> str:
    return _dumps({"type": PING, "nonce": nonce})


def _nonce(payload: dict[str, Any]) -> Optional[str]:
    nonce = payload.get("nonce")
    return None if nonce is None else str(nonce)


def _decode_response(payload: dict[str, Any]) -> Union[Ack, ErrorFrame]:
    error = payload.get("error")
    if not error:
        return Ack(nonce=_nonce(payload))

    # The error is either a bare string or an object with code/message
    if isinstance(error, dict):
        code = error.get("code") or error.get("status")
        message = error.get("message") or error.get("msg") or json.dumps(error)
    else:
        code = payload.get("code")
        message = str(error)

    return ErrorFrame(nonce=_nonce(payload), code=code, message=message)


def _decode_pong(payload: dict[str, Any]) -> Pong:
    gap = None
    data = payload.get("data")
    if isinstance(data, dict):
        try:
            gap = int(data["gap"])
        except (KeyError, TypeError, ValueError):
            gap = None
    return Pong(nonce=_nonce(payload), gap=gap)


def _decode_chat(payload: dict[str, Any]) -> ChatBatch:
    # channel_info is absent on historic messages sent right after connecting
    channel_id = None
    channel_info = payload.get("channel_info")
    if isinstance(channel_info, dict) and channel_info.get("channel_id") is not None:
        channel_id = str(channel_info["channel_id"])

    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}

    chats = data.get("chats") or []
    if not isinstance(chats, list):
        raise DecodeError("CHAT frame chats is not a list", raw=payload)

    messages: list[Union[ChatMessage, DecodeError]] = []
    for raw in chats:
        try:
            messages.append(ChatMessage.from_raw(raw))
        except DecodeError as e:
            logger.warning(f"Skipping malformed chat message: {e}")
            messages.append(e)

    eid = data.get("eid")
    return ChatBatch(
        eid=None if eid is None else str(eid),
        channel_id=channel_id,
        messages=messages,
    )


def decode_frame(text: str) -> InboundFrame:
    """
    Decode one inbound frame.

    Args:
        text: Raw text of the WebSocket frame

    Returns:
        The typed frame

    Raises:
        DecodeError: If the frame isn't a JSON object
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(f"frame is not valid JSON: {e}", raw=text) from e

    if not isinstance(payload, dict):
        raise DecodeError("frame is not a JSON object", raw=text)

    frame_type = payload.get("type")
    if frame_type == RESPONSE:
        return _decode_response(payload)
    if frame_type == CHAT:
        return _decode_chat(payload)
    if frame_type == PONG:
        return _decode_pong(payload)

    return UnknownFrame(type=frame_type, payload=payload)
