"""
Credential providers for the Trovo API.

Every request carries the application's client id. Requests made on behalf of
a user also carry an access token, supplied by a :class:`TokenProvider`:

- :class:`AccessTokenOnly` wraps a fixed token and fails once it expires.
- :class:`OAuthTokenProvider` refreshes the token with the user's refresh token.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from trovo.errors import (
    REFRESH_REJECTED,
    AccessTokenExpired,
    AuthError,
    RefreshRejected,
    RequestError,
)

if TYPE_CHECKING:
    from trovo.client import Client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientId:
    """Application identifier sent with every request."""
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AccessToken:
    """An OAuth access token and, if known, when it stops being valid."""
    token: str
    expires_at: Optional[datetime] = None

    def expires_within(self, leeway: timedelta = timedelta(0)) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) + leeway >= self.expires_at

    @property
    def is_expired(self) -> bool:
        return self.expires_within()

    def __repr__(self) -> str:
        # Never leak the secret into logs
        return f"AccessToken(token='***', expires_at={self.expires_at!r})"


class TokenProvider:
    """
    Capability shared by all credential providers.

    Subclasses implement :meth:`access_token` and may override
    :meth:`refresh_if_needed`.
    """

    def __init__(self, client_id: str):
        self._client_id = ClientId(client_id)

    @property
    def client_id(self) -> str:
        """Get the application's client id."""
        return self._client_id.value

    def access_token(self) -> AccessToken:
        """
        Get the current access token.

        Raises:
            AuthError: If no valid token can be produced
        """
        raise NotImplementedError

    async def refresh_if_needed(self) -> None:
        """Refresh the access token if it is about to expire."""
        return None


class AccessTokenOnly(TokenProvider):
    """A fixed access token which can't be refreshed."""

    def __init__(
        self,
        client_id: str,
        access_token: str,
        expires_at: Optional[datetime] = None,
    ):
        super().__init__(client_id)
        self._token = AccessToken(access_token, expires_at)

    def access_token(self) -> AccessToken:
        if self._token.is_expired:
            raise AccessTokenExpired(
                "access token expired and doesn't support refreshing"
            )
        return self._token


class OAuthTokenProvider(TokenProvider):
    """
    Access token backed by a refresh token.

    The token is refreshed through the Trovo API whenever it is missing or
    within ``refresh_leeway`` of expiring. Concurrent callers share a single
    refresh.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        access_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        refresh_leeway: timedelta = timedelta(minutes=5),
        http: Optional["Client"] = None,
    ):
        super().__init__(client_id)
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._token = AccessToken(access_token, expires_at) if access_token else None
        self._refresh_leeway = refresh_leeway
        self._http = http
        self._lock = asyncio.Lock()

    def bind(self, http: "Client") -> None:
        """Use ``http`` for refresh requests unless a client was already given."""
        if self._http is None:
            self._http = http

    @property
    def refresh_token(self) -> str:
        """Get the latest refresh token (Trovo rotates it on every refresh)."""
        return self._refresh_token

    def access_token(self) -> AccessToken:
        if self._token is None:
            raise AuthError("no access token available, refresh required")
        if self._token.is_expired:
            raise AuthError("access token expired, refresh required")
        return self._token

    def _needs_refresh(self) -> bool:
        return self._token is None or self._token.expires_within(self._refresh_leeway)

    async def refresh_if_needed(self) -> None:
        if not self._needs_refresh():
            return

        async with self._lock:
            # Another task may have refreshed while we waited
            if not self._needs_refresh():
                return
            await self.refresh()

    async def refresh(self) -> AccessToken:
        """
        Exchange the refresh token for a new access token.

        Returns:
            The new access token

        Raises:
            RefreshRejected: If the platform rejected the refresh token
            RequestError: If the refresh failed for a transient reason
        """
        if self._http is None:
            raise AuthError("OAuthTokenProvider is not bound to a Client")

        logger.info("Refreshing Trovo access token")
        try:
            grant = await self._http.refresh_access_token(
                self._client_secret, self._refresh_token
            )
        except RequestError as e:
            if e.api_error is not None and e.api_error.status in REFRESH_REJECTED:
                logger.error(f"Refresh token rejected: {e.api_error}")
                raise RefreshRejected(str(e.api_error), e.api_error) from e
            raise

        self._refresh_token = grant.refresh_token or self._refresh_token
        self._token = AccessToken(grant.access_token, grant.expires_at)
        logger.info(f"Access token refreshed (expires_at={self._token.expires_at})")
        return self._token
