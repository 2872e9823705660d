"""
HTTP API client for Trovo.
"""

import aiohttp
import asyncio
import json
import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from trovo.auth import (
    AccessToken,
    AccessTokenOnly,
    ClientId,
    OAuthTokenProvider,
    TokenProvider,
)
from trovo.chat.models import ChatToken
from trovo.chat.session import ChatMessageStream, Connector
from trovo.config import API_BASE_URL, ChatConfig, TrovoConfig
from trovo.errors import (
    ACCESS_TOKEN_REJECTED,
    ApiError,
    AuthError,
    AuthenticatedRequestError,
    ErrorStatus,
    RequestError,
)
from trovo.models import ChannelInfo, GetUsersResponse, TokenGrant, User

logger = logging.getLogger(__name__)

# Statuses for which Trovo sends a JSON error body
_API_ERROR_STATUSES = (400, 401, 500)


class Client:
    """
    Entrypoint for making requests to the Trovo API.

    Args:
        auth: Client id, or a token provider for calls made on behalf of a user
        session: aiohttp session to share; the client creates and owns one if None
        config: API and chat settings
    """

    def __init__(
        self,
        auth: Union[str, ClientId, TokenProvider],
        session: Optional[aiohttp.ClientSession] = None,
        config: Optional[TrovoConfig] = None,
    ):
        if isinstance(auth, str):
            auth = ClientId(auth)
        self._auth = auth
        self._config = config or TrovoConfig()
        self._base_url = self._config.api_base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

        if isinstance(auth, OAuthTokenProvider):
            auth.bind(self)

    @classmethod
    def from_config(cls, config: TrovoConfig) -> "Client":
        """Create a client with the token provider the config has credentials for."""
        if not config.client_id:
            raise ValueError("client_id must be set in config")

        auth: Union[ClientId, TokenProvider]
        if config.client_secret and config.refresh_token:
            auth = OAuthTokenProvider(
                config.client_id,
                config.client_secret,
                config.refresh_token,
                access_token=config.access_token,
            )
        elif config.access_token:
            auth = AccessTokenOnly(config.client_id, config.access_token)
        else:
            auth = ClientId(config.client_id)

        return cls(auth, config=config)

    @property
    def client_id(self) -> str:
        """Get the application's client id."""
        if isinstance(self._auth, ClientId):
            return self._auth.value
        return self._auth.client_id

    @property
    def config(self) -> TrovoConfig:
        return self._config

    @property
    def token_provider(self) -> Optional[TokenProvider]:
        """Get the token provider, if the client was created with one."""
        return self._auth if isinstance(self._auth, TokenProvider) else None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.http_timeout)
            )
        return self._session

    async def _access_token(self) -> AccessToken:
        provider = self.token_provider
        if provider is None:
            raise AuthError("this request requires a token provider, not just a client id")
        await provider.refresh_if_needed()
        return provider.access_token()

    async def _api_error(self, response: aiohttp.ClientResponse) -> ApiError:
        try:
            data = await response.json(content_type=None)
            return ApiError.model_validate(data)
        except (aiohttp.ContentTypeError, json.JSONDecodeError, ValueError, ValidationError):
            return ApiError()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
        access_token: Optional[AccessToken] = None,
    ) -> Any:
        """
        Send one API request.

        Returns:
            Decoded JSON body, or None if the body is empty

        Raises:
            AuthenticatedRequestError: If ``access_token`` was rejected
            RequestError: For any other failure
        """
        url = f"{self._base_url}/{path}"
        headers = {
            "Accept": "application/json",
            "Client-ID": self.client_id,
        }
        if access_token is not None:
            headers["Authorization"] = f"OAuth {access_token.token}"

        logger.debug(f"{method} {url}")

        try:
            async with self._get_session().request(
                method, url, json=payload, headers=headers
            ) as response:
                if response.status in _API_ERROR_STATUSES:
                    api_error = await self._api_error(response)
                    if access_token is not None and (
                        response.status == 401 or api_error.status in ACCESS_TOKEN_REJECTED
                    ):
                        raise AuthenticatedRequestError(str(api_error), api_error)
                    raise RequestError(str(api_error), api_error)

                if response.status >= 300:
                    raise RequestError(f"HTTP {response.status} from {path}")

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise RequestError(f"Invalid JSON from {path}: {e}") from e

        except aiohttp.ClientError as e:
            raise RequestError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise RequestError(f"Request to {path} timed out") from e

    async def users(self, usernames: list[str]) -> list[User]:
        """
        Get users' channel id, user id and nickname by username.

        Note: if any username doesn't exist the API rejects the whole request,
        so the result is empty.
        """
        try:
            data = await self._request("POST", "getusers", {"user": list(usernames)})
        except RequestError as e:
            if e.api_error is not None and e.api_error.status == ErrorStatus.INVALID_PARAMETERS:
                return []
            raise

        return GetUsersResponse.model_validate(data or {}).users

    async def user(self, username: str) -> Optional[User]:
        """Get a user by username, or None if not found."""
        users = await self.users([username])
        return users[0] if users else None

    async def channel_by_id(self, channel_id: str) -> Optional[ChannelInfo]:
        """Get channel information, or None if the channel doesn't exist."""
        data = await self._request("POST", "channels/id", {"channel_id": channel_id})
        channel = ChannelInfo.model_validate(data or {})

        # Unknown channels come back nulled out; a real one always has a username
        if not channel.username:
            return None
        return channel

    async def chat_token_for_channel(
        self,
        channel_id: str,
        access_token: Optional[AccessToken] = None,
    ) -> ChatToken:
        """Get a read-only chat token for a channel."""
        data = await self._request(
            "GET", f"chat/channel-token/{channel_id}", access_token=access_token
        )
        return self._chat_token(data)

    async def chat_token_for_user(self, access_token: Optional[AccessToken] = None) -> ChatToken:
        """Get a chat token for the authenticated user's own channel."""
        if access_token is None:
            access_token = await self._access_token()
        data = await self._request("GET", "chat/token", access_token=access_token)
        return self._chat_token(data)

    async def exchange_chat_token(
        self,
        access_token: Optional[AccessToken],
        channel_id: Optional[str],
    ) -> ChatToken:
        """
        Get a chat token for one chat connection.

        Args:
            access_token: Access token to authenticate with, if any
            channel_id: Channel to join, or None for the token owner's channel

        Raises:
            AuthenticatedRequestError: If the access token was rejected
            RequestError: If the exchange failed for any other reason
        """
        if channel_id is None:
            return await self.chat_token_for_user(access_token)
        return await self.chat_token_for_channel(channel_id, access_token)

    def _chat_token(self, data: Any) -> ChatToken:
        try:
            return ChatToken.model_validate(data)
        except ValidationError as e:
            raise RequestError(f"Malformed chat token response: {e}") from e

    async def send_chat_message(self, content: str, channel_id: Optional[str] = None) -> None:
        """
        Send a chat message.

        Sending to your own channel requires the ``chat_send_self`` scope. To
        send as user A to user B's channel, A must grant ``chat_send_self`` and
        B ``send_to_my_channel``.

        Args:
            content: Message text
            channel_id: Target channel, or None for the user's own channel
        """
        payload: dict[str, Any] = {"content": content}
        if channel_id is not None:
            payload["channel_id"] = channel_id

        await self._request(
            "POST", "chat/send", payload, access_token=await self._access_token()
        )

    async def refresh_access_token(self, client_secret: str, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        data = await self._request(
            "POST",
            "refreshtoken",
            {
                "client_secret": client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        try:
            return TokenGrant.model_validate(data)
        except ValidationError as e:
            raise RequestError(f"Malformed refresh token response: {e}") from e

    def open_chat(
        self,
        channel_id: Optional[str],
        token_provider: Optional[TokenProvider] = None,
        config: Optional[ChatConfig] = None,
        connector: Optional[Connector] = None,
    ) -> ChatMessageStream:
        """
        Open a chat stream for a channel.

        Nothing is sent until the stream is first iterated. The stream
        reconnects by itself; close it to stop.

        Args:
            channel_id: Channel to read, or None for the authenticated user's channel
            token_provider: Credentials for the chat token exchange; defaults to
                the client's own provider
            config: Chat settings; defaults to the client's config
            connector: Replacement for TransportLink.connect
        """
        provider = token_provider or self.token_provider
        if isinstance(provider, OAuthTokenProvider):
            provider.bind(self)

        return ChatMessageStream(
            channel_id=channel_id,
            exchanger=self,
            token_provider=provider,
            config=config or self._config.chat,
            connector=connector,
        )

    def open_user_chat(self, config: Optional[ChatConfig] = None) -> ChatMessageStream:
        """Open a chat stream for the authenticated user's own channel."""
        if self.token_provider is None:
            raise AuthError("reading your own chat requires a token provider")
        return self.open_chat(None, config=config)

    async def close(self) -> None:
        """Close the HTTP session if the client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def open_chat(
    channel_id: str,
    token_provider: Union[str, TokenProvider],
    config: Optional[TrovoConfig] = None,
) -> ChatMessageStream:
    """
    Open a chat stream without managing a :class:`Client`.

    The stream owns the client it creates and closes it with itself.

    Args:
        channel_id: Channel to read chat from
        token_provider: Token provider, or a bare client id for anonymous reading
    """
    client = Client(token_provider, config=config)
    return ChatMessageStream(
        channel_id=channel_id,
        exchanger=client,
        token_provider=client.token_provider,
        config=client.config.chat,
        on_close=client.close,
    )
