"""
WebSocket connection management for Trovo chat.
"""

import aiohttp
import asyncio
import logging
from typing import Optional

from trovo.chat.exceptions import ConnectError, LinkClosedError, LinkError

logger = logging.getLogger(__name__)

_CLOSE_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
)


class TransportLink:
    """
    One physical WebSocket connection to the chat server.

    Sends and receives raw text frames; knows nothing about the chat protocol.
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        session: Optional[aiohttp.ClientSession] = None,
        close_timeout: float = 5.0,
    ):
        self._ws = ws
        self._session = session  # Closed together with the link
        self._close_timeout = close_timeout
        self._closed = False

    @classmethod
    async def connect(
        cls,
        url: str,
        timeout: float = 10.0,
        close_timeout: float = 5.0,
    ) -> "TransportLink":
        """
        Open a WebSocket connection on a private aiohttp session.

        Args:
            url: WebSocket URL
            timeout: Connection timeout in seconds
            close_timeout: How long close() waits for the peer before giving up

        Returns:
            Connected TransportLink

        Raises:
            ConnectError: If DNS, TLS or the WebSocket handshake fails
        """
        logger.info(f"Connecting to {url}")

        session = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(session.ws_connect(url), timeout=timeout)
        except asyncio.TimeoutError as e:
            await session.close()
            raise ConnectError(f"Connection timeout after {timeout}s") from e
        except (aiohttp.ClientError, OSError) as e:
            await session.close()
            raise ConnectError(f"WebSocket connection failed: {e}") from e
        except BaseException:
            await session.close()
            raise

        return cls(ws, session=session, close_timeout=close_timeout)

    async def send(self, text: str) -> None:
        """
        Send a text frame.

        Raises:
            LinkClosedError: If the connection is closed
            LinkError: If the frame couldn't be written
        """
        if self._closed or self._ws.closed:
            raise LinkClosedError("cannot send on a closed socket")

        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.error(f"Failed to send message: {e}")
            raise LinkError(f"Failed to send message: {e}") from e

    async def receive(self) -> str:
        """
        Wait for the next text frame.

        Returns:
            Frame text (binary frames are decoded as UTF-8)

        Raises:
            LinkClosedError: If the server closed the connection
            LinkError: If the connection failed
        """
        if self._closed:
            raise LinkClosedError("cannot receive on a closed socket")

        while True:
            try:
                msg = await self._ws.receive()
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                raise LinkError(f"Error receiving message: {e}") from e

            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                try:
                    return msg.data.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise LinkError(f"Binary frame is not UTF-8: {e}") from e
            elif msg.type in _CLOSE_TYPES:
                logger.warning(f"WebSocket closed by server (code={self._ws.close_code})")
                raise LinkClosedError(
                    f"socket was closed: {msg.extra or self._ws.close_code}",
                    code=self._ws.close_code,
                )
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"WebSocket error: {self._ws.exception()}")
                raise LinkError(f"WebSocket error: {self._ws.exception()}")
            else:
                logger.debug(f"Ignoring message type: {msg.type}")

    async def close(self) -> None:
        """
        Close the connection.

        Waits at most ``close_timeout`` for the close handshake, then drops the
        connection.
        """
        if self._closed:
            return

        self._closed = True

        try:
            if not self._ws.closed:
                await asyncio.wait_for(self._ws.close(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Peer didn't finish close handshake within {self._close_timeout}s, "
                "terminating connection"
            )
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.warning(f"Error closing WebSocket: {e}")
        finally:
            if self._session is not None:
                # Closing the session drops any connection left open above
                await self._session.close()

        logger.info("WebSocket connection closed")

    @property
    def closed(self) -> bool:
        """Check if connection is closed."""
        return self._closed
