"""Pytest configuration and fixtures for trovo tests."""

import asyncio
import json
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from trovo.chat.exceptions import LinkClosedError
from trovo.chat.models import ChatToken
from trovo.config import ChatConfig


def chat_entry(**overrides: Any) -> dict[str, Any]:
    """Build a fully populated raw chat message as Trovo sends it."""
    entry = {
        "type": 0,
        "content": "hello chat",
        "nick_name": "viewer",
        "avatar": "https://headicon.trovo.live/user/viewer.png",
        "sub_lv": "sub_L1",
        "medals": ["sub_L1_T1"],
        "decos": [],
        "roles": ["follower"],
        "message_id": "msg-1",
        "sender_id": 1001,
        "uid": 1001,
        "user_name": "viewer",
        "send_time": 1700000000,
        "content_data": {},
        "custom_role": None,
        "emotes": [
            {"name": "TrovoLove", "url": "https://e/love.png", "gifp": "https://e/love.gifp", "webp": "https://e/love.webp"}
        ],
    }
    entry.update(overrides)
    return entry


def chat_frame(*chats: dict[str, Any], eid: str = "eid-1") -> dict[str, Any]:
    return {
        "type": "CHAT",
        "channel_info": {"channel_id": "100"},
        "data": {"eid": eid, "chats": list(chats)},
    }


class FakeLink:
    """
    In-memory stand-in for TransportLink.

    Answers AUTH/JOIN/PING like the chat server and, once JOIN is sent, plays
    back ``frames`` (dicts are sent as JSON, exceptions are raised from receive).
    """

    def __init__(
        self,
        frames: tuple = (),
        auto_pong: bool = True,
        ack_join: bool = True,
        reject_auth: bool = False,
    ):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._frames = list(frames)
        self._auto_pong = auto_pong
        self._ack_join = ack_join
        self._reject_auth = reject_auth

    def push(self, item: Any) -> None:
        if isinstance(item, dict):
            item = json.dumps(item)
        self.incoming.put_nowait(item)

    async def send(self, text: str) -> None:
        if self.closed:
            raise LinkClosedError()

        frame = json.loads(text)
        self.sent.append(frame)

        if frame["type"] == "AUTH":
            response = {"type": "RESPONSE", "nonce": frame["nonce"]}
            if self._reject_auth:
                response["error"] = "invalid chat token"
            self.push(response)
        elif frame["type"] == "JOIN":
            if self._ack_join:
                self.push({"type": "RESPONSE", "nonce": frame["nonce"]})
            for item in self._frames:
                self.push(item)
        elif frame["type"] == "PING" and self._auto_pong:
            self.push({"type": "PONG", "nonce": frame["nonce"], "data": {"gap": 30}})

    async def receive(self) -> str:
        if self.closed:
            raise LinkClosedError()
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def sent_types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]


class FakeConnector:
    """Hands out a new FakeLink per connection; ``link_options`` configure them in order."""

    def __init__(self, *link_options: dict[str, Any], failures: Optional[list] = None):
        self.link_options = list(link_options)
        self.failures = list(failures or [])
        self.links: list[FakeLink] = []
        self.calls: list[str] = []

    async def __call__(self, url: str, timeout: float = 10.0, close_timeout: float = 5.0) -> FakeLink:
        self.calls.append(url)
        if self.failures:
            raise self.failures.pop(0)

        options = self.link_options[len(self.links)] if len(self.links) < len(self.link_options) else {}
        link = FakeLink(**options)
        self.links.append(link)
        return link


class FakeExchanger:
    """Chat token collaborator; ``errors`` are raised on successive calls (None = succeed)."""

    def __init__(self, errors: Optional[list] = None):
        self.errors = list(errors or [])
        self.calls: list[tuple] = []

    async def exchange_chat_token(self, access_token, channel_id) -> ChatToken:
        self.calls.append((access_token, channel_id))
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return ChatToken(token=f"chat-token-{len(self.calls)}")


@pytest.fixture
def chat_config() -> ChatConfig:
    """Chat settings with short timers so tests run fast."""
    return ChatConfig(
        heartbeat_interval=10.0,
        staleness_window=20.0,
        initial_backoff=0.01,
        max_backoff=0.05,
        handshake_timeout=1.0,
        close_timeout=0.1,
    )


@pytest.fixture
def exchanger() -> FakeExchanger:
    return FakeExchanger()


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
) -> AsyncMock:
    """Create a configured mock aiohttp response usable as an async context manager.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.json.return_value = json_data
    response.__aenter__.return_value = response
    response.__aexit__.return_value = None
    return response
