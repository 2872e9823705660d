"""
Chat session state machine and the message stream it feeds.

A :class:`ChatSession` owns one chat subscription. It fetches a chat token,
opens a :class:`~trovo.chat.websocket.TransportLink`, authenticates, joins the
channel and then forwards chat messages while sending heartbeats. Transient
failures send it back through the handshake after a backoff; only bad
credentials or the caller closing the stream end it.

The caller sees a single :class:`ChatMessageStream` no matter how many
connections the session went through.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from trovo.auth import AccessToken, TokenProvider
from trovo.chat.exceptions import (
    DecodeError,
    HandshakeError,
    StaleConnectionError,
)
from trovo.chat.models import ChatMessage, ChatToken
from trovo.chat.protocol import (
    Ack,
    ChatBatch,
    ErrorFrame,
    InboundFrame,
    Pong,
    decode_frame,
    encode_auth,
    encode_join,
    encode_ping,
)
from trovo.chat.reconnect import ReconnectionManager
from trovo.chat.websocket import TransportLink
from trovo.config import ChatConfig
from trovo.errors import TrovoError, is_fatal

logger = logging.getLogger(__name__)

ChatItem = Union[ChatMessage, DecodeError]
Connector = Callable[..., Awaitable[TransportLink]]


class ChatState(str, Enum):
    """Connection phase of a chat session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    JOINING = "joining"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class _Terminal:
    error: BaseException


_END = object()


class ChatSession:
    """
    Drives one chat subscription through its connection phases.

    Args:
        channel_id: Channel to read chat from, or None for the token owner's channel
        exchanger: Object with ``async exchange_chat_token(access_token, channel_id)``,
            normally a :class:`trovo.client.Client`
        queue: Output queue read by the :class:`ChatMessageStream`
        token_provider: Source of the access token used for the exchange
        config: Chat settings
        connector: Coroutine function opening a TransportLink
        on_close: Coroutine function awaited once the session ends, however it ends
    """

    def __init__(
        self,
        channel_id: Optional[str],
        exchanger: Any,
        queue: asyncio.Queue,
        token_provider: Optional[TokenProvider] = None,
        config: Optional[ChatConfig] = None,
        connector: Optional[Connector] = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.channel_id = channel_id
        self._exchanger = exchanger
        self._queue = queue
        self._token_provider = token_provider
        self._config = config or ChatConfig()
        self._connector = connector or TransportLink.connect
        self._on_close = on_close

        self._reconnection_manager = ReconnectionManager(
            initial_backoff=self._config.initial_backoff,
            max_backoff=self._config.max_backoff,
        )

        self._state = ChatState.IDLE
        self._link: Optional[TransportLink] = None
        self._chat_token: Optional[ChatToken] = None
        self._ping_seq = 0

        # Event loop timestamps
        self.last_heartbeat_at: Optional[float] = None
        self.last_frame_at: Optional[float] = None

        self._started = False

        # Statistics
        self._total_reconnects = 0

    async def run(self) -> None:
        """Run until the credentials are rejected or the task is cancelled."""
        self._started = True
        try:
            await self._run()
        except asyncio.CancelledError:
            logger.info(f"Chat session for channel {self.channel_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Chat session failed: {e}", exc_info=True)
            await self._close_link()
            self._set_state(ChatState.CLOSED)
            await self._queue.put(_Terminal(e))
        finally:
            await self._close_link()
            self._set_state(ChatState.CLOSED)
            if self._on_close is not None:
                await self._on_close()

        await self._queue.put(_END)

    async def _run(self) -> None:
        while True:
            try:
                await self._connect_and_stream()
            except TrovoError as e:
                if is_fatal(e):
                    logger.error(f"Credentials rejected, closing chat session: {e}")
                    await self._close_link()
                    self._set_state(ChatState.CLOSED)
                    await self._queue.put(_Terminal(e))
                    return
                logger.warning(f"Chat connection lost: {e}")

            await self._close_link()
            self._set_state(ChatState.RECONNECTING)
            self._total_reconnects += 1
            await self._reconnection_manager.wait_before_reconnect()

    async def _connect_and_stream(self) -> None:
        self._set_state(ChatState.CONNECTING)
        self._chat_token = await self._fetch_chat_token()
        self._link = await self._connector(
            self._config.url,
            timeout=self._config.connect_timeout,
            close_timeout=self._config.close_timeout,
        )

        self._set_state(ChatState.AUTHENTICATING)
        nonce = uuid.uuid4().hex
        await self._link.send(encode_auth(nonce, self._chat_token))
        await self._await_ack(nonce, "AUTH")

        if self._config.join_channel and self.channel_id is not None:
            self._set_state(ChatState.JOINING)
            nonce = uuid.uuid4().hex
            await self._link.send(encode_join(nonce, self.channel_id))
            await self._await_ack(nonce, "JOIN", chat_confirms=True)

        self._set_state(ChatState.ACTIVE)
        self._reconnection_manager.reset()
        await self._stream()

    async def _fetch_chat_token(self) -> ChatToken:
        access_token: Optional[AccessToken] = None
        if self._token_provider is not None:
            await self._token_provider.refresh_if_needed()
            access_token = self._token_provider.access_token()

        return await self._exchanger.exchange_chat_token(access_token, self.channel_id)

    async def _await_ack(self, nonce: str, request: str, chat_confirms: bool = False) -> None:
        """
        Wait for the server's response to ``request``.

        Chat that arrives meanwhile is forwarded. With ``chat_confirms`` a CHAT
        frame also counts as success, since the server starts streaming once
        the channel is joined.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.handshake_timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise HandshakeError(f"No response to {request} within {self._config.handshake_timeout}s")

            try:
                text = await asyncio.wait_for(self._link.receive(), timeout=remaining)
            except asyncio.TimeoutError:
                raise HandshakeError(
                    f"No response to {request} within {self._config.handshake_timeout}s"
                ) from None

            self.last_frame_at = loop.time()
            frame = await self._decode(text)
            if frame is None:
                continue

            if isinstance(frame, Ack) and frame.nonce in (nonce, None):
                logger.debug(f"{request} acknowledged")
                return
            if isinstance(frame, ErrorFrame) and frame.nonce in (nonce, None):
                raise HandshakeError(f"{request} rejected: {frame.message}", code=frame.code)
            if isinstance(frame, ChatBatch):
                await self._forward(frame)
                if chat_confirms:
                    logger.debug(f"Chat received before {request} response, treating as joined")
                    return
                continue

            logger.debug(f"Ignoring {type(frame).__name__} while waiting for {request}")

    async def _stream(self) -> None:
        logger.info(f"Chat session active for channel {self.channel_id}")
        receiver = asyncio.create_task(self._receive_loop())
        heartbeat = asyncio.create_task(self._heartbeat_loop())

        try:
            done, _ = await asyncio.wait(
                {receiver, heartbeat},
                return_when=asyncio.FIRST_COMPLETED,
            )
            # Both loops only end by raising
            for task in done:
                task.result()
        finally:
            receiver.cancel()
            heartbeat.cancel()
            await asyncio.gather(receiver, heartbeat, return_exceptions=True)

    async def _receive_loop(self) -> None:
        loop = asyncio.get_running_loop()
        window = self._config.staleness_window

        while True:
            try:
                text = await asyncio.wait_for(self._link.receive(), timeout=window)
            except asyncio.TimeoutError:
                raise StaleConnectionError(f"No frame received for {window}s") from None

            self.last_frame_at = loop.time()
            frame = await self._decode(text)
            if frame is not None:
                await self._dispatch(frame)

    async def _heartbeat_loop(self) -> None:
        loop = asyncio.get_running_loop()

        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            self._ping_seq += 1
            await self._link.send(encode_ping(str(self._ping_seq)))
            self.last_heartbeat_at = loop.time()
            logger.debug(f"Sent PING {self._ping_seq}")

    async def _decode(self, text: str) -> Optional[InboundFrame]:
        try:
            return decode_frame(text)
        except DecodeError as e:
            logger.warning(f"Dropping undecodable frame: {e}")
            await self._queue.put(e)
            return None

    async def _dispatch(self, frame: InboundFrame) -> None:
        if isinstance(frame, ChatBatch):
            await self._forward(frame)
        elif isinstance(frame, Pong):
            logger.debug(f"Received PONG {frame.nonce} (server gap={frame.gap})")
        elif isinstance(frame, ErrorFrame):
            logger.warning(f"Chat server error {frame.code}: {frame.message}")
        elif isinstance(frame, Ack):
            logger.debug(f"Received RESPONSE {frame.nonce}")
        else:
            logger.debug(f"Ignoring frame type {frame.type}")

    async def _forward(self, batch: ChatBatch) -> None:
        for item in batch.messages:
            await self._queue.put(item)

    async def _close_link(self) -> None:
        link, self._link = self._link, None
        self._chat_token = None
        if link is not None:
            await link.close()

    def _set_state(self, state: ChatState) -> None:
        if state != self._state:
            logger.debug(f"Chat session {self._state.value} -> {state.value}")
            self._state = state

    @property
    def state(self) -> ChatState:
        """Get the current connection phase."""
        return self._state

    @property
    def total_reconnects(self) -> int:
        """Get total number of reconnections."""
        return self._total_reconnects

    @property
    def reconnect_attempts(self) -> int:
        """Get the number of attempts since the last successful connection."""
        return self._reconnection_manager.attempts

    @property
    def started(self) -> bool:
        """Check if run() has begun, and so will run its cleanup."""
        return self._started

    @property
    def config(self) -> ChatConfig:
        return self._config

    @property
    def token_provider(self) -> Optional[TokenProvider]:
        return self._token_provider


class ChatMessageStream:
    """
    Async iterator over a channel's chat.

    Yields :class:`ChatMessage` items, and :class:`DecodeError` items for
    messages that couldn't be decoded, in the order the server sent them.
    If the credentials are rejected the error is raised once and iteration
    ends. Nothing connects until the first item is requested.

    Usage:
        async with client.open_chat(channel_id) as messages:
            async for message in messages:
                if isinstance(message, ChatMessage):
                    print(f"{message.nickname}: {message.content}")
    """

    def __init__(
        self,
        channel_id: Optional[str],
        exchanger: Any,
        token_provider: Optional[TokenProvider] = None,
        config: Optional[ChatConfig] = None,
        connector: Optional[Connector] = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        config = config or ChatConfig()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.buffer_size)
        self._session = ChatSession(
            channel_id=channel_id,
            exchanger=exchanger,
            queue=self._queue,
            token_provider=token_provider,
            config=config,
            connector=connector,
            on_close=on_close,
        )
        self._on_close = on_close
        self._task: Optional[asyncio.Task] = None
        self._finished = False
        self._closed = False

    def __aiter__(self) -> "ChatMessageStream":
        return self

    async def __anext__(self) -> ChatItem:
        if self._finished:
            raise StopAsyncIteration

        if self._task is None:
            self._task = asyncio.create_task(
                self._session.run(),
                name=f"trovo-chat-{self._session.channel_id}",
            )

        item = await self._queue.get()

        if item is _END:
            await self.aclose()
            raise StopAsyncIteration
        if isinstance(item, _Terminal):
            await self.aclose()
            raise item.error
        return item

    async def aclose(self) -> None:
        """
        Close the chat connection and stop the session.

        Calling multiple times has no effect.
        """
        if self._closed:
            return

        self._closed = True
        self._finished = True

        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        # Wake up anyone still waiting on the queue
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)

        # A session that never ran has no finally block to do this
        if self._on_close is not None and not self._session.started:
            await self._on_close()

        logger.info(f"Chat stream for channel {self._session.channel_id} closed")

    async def __aenter__(self) -> "ChatMessageStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __del__(self):
        task = self._task
        if task is not None and not task.done() and not task.get_loop().is_closed():
            task.cancel()

    @property
    def state(self) -> ChatState:
        """Get the current connection phase of the underlying session."""
        return self._session.state

    @property
    def session(self) -> ChatSession:
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed
