"""
Errors raised by the Trovo HTTP API and token providers.
"""

from enum import IntEnum
from typing import Optional, Union

from pydantic import BaseModel, field_validator


class ErrorStatus(IntEnum):
    """Error codes returned by the Trovo API."""

    INTERNAL_FETCH = -1201
    INTERNAL_TIMEOUT = -1000
    INVALID_PARAMETERS = 1002
    INTERNAL_UNKNOWN = 1111
    CONFLICT = 1203
    INVALID_USER = 10505
    AUTHORIZATION_FAILED = 10703
    INVALID_AUTH_CODE_1 = 10710
    MESSAGE_SPAM = 10908
    INVALID_CATEGORY = 11000
    MODERATED_1 = 11101
    MODERATED_2 = 11103
    ACCOUNT_BLOCKED = 11400
    INVALID_HEADER = 11701
    INVALID_SCOPE = 11703
    INVALID_ACCESS_TOKEN = 11704
    RATE_LIMIT_EXCEEDED = 11706
    MISSING_CHAT_PERMISSION = 11707
    INVALID_SHARD_VALUE = 11708
    MISSING_SHARD_TOKEN_PERMISSION = 11709
    INVALID_AUTH_CODE_2 = 11710
    USED_AUTH_CODE = 11711
    REFRESH_TOKEN_EXPIRED = 11712
    INVALID_REFRESH_TOKEN = 11713
    ACCESS_TOKEN_EXPIRED = 11714
    INVALID_GRANT_TYPE = 11715
    INVALID_REDIRECT_URI = 11716
    INVALID_CLIENT_SECRET = 11717
    ACCESS_TOKEN_LIMIT = 11718
    UNAUTHORIZED_SCOPE = 11730
    BANNED_IN_CHANNEL = 12400
    SLOW_MODE = 12401
    FOLLOWER_ONLY = 12402
    UNAUTHORIZED_HYPERLINK = 12905
    MODERATED_MESSAGE = 12906
    UNKNOWN = 20000


# Statuses meaning the access token itself was not accepted
ACCESS_TOKEN_REJECTED = frozenset({
    ErrorStatus.AUTHORIZATION_FAILED,
    ErrorStatus.INVALID_SCOPE,
    ErrorStatus.INVALID_ACCESS_TOKEN,
    ErrorStatus.ACCESS_TOKEN_EXPIRED,
    ErrorStatus.UNAUTHORIZED_SCOPE,
})

# Statuses meaning a refresh can never succeed with the credentials we hold
REFRESH_REJECTED = frozenset({
    ErrorStatus.REFRESH_TOKEN_EXPIRED,
    ErrorStatus.INVALID_REFRESH_TOKEN,
    ErrorStatus.INVALID_GRANT_TYPE,
    ErrorStatus.INVALID_CLIENT_SECRET,
})


class ApiError(BaseModel):
    """Error body returned by the Trovo API."""

    status: Union[ErrorStatus, int] = ErrorStatus.UNKNOWN
    message: str = "Unknown or uncategorized error"

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value):
        try:
            return ErrorStatus(int(value))
        except (TypeError, ValueError):
            return value

    def __str__(self) -> str:
        status = self.status.name if isinstance(self.status, ErrorStatus) else self.status
        return f"bad request ({status}): {self.message}"


class TrovoError(Exception):
    """Base exception for all Trovo client errors."""
    pass


class RequestError(TrovoError):
    """
    A request failed in a way that may succeed if retried.

    Covers network failures, unexpected HTTP statuses and API errors that are
    not about the credentials themselves.
    """

    def __init__(self, message: str, api_error: Optional[ApiError] = None):
        super().__init__(message)
        self.api_error = api_error


class AuthenticatedRequestError(TrovoError):
    """The platform rejected the access token used for a request."""

    def __init__(self, message: str, api_error: Optional[ApiError] = None):
        super().__init__(message)
        self.api_error = api_error


class AuthError(TrovoError):
    """The token provider cannot produce a usable credential."""
    pass


class AccessTokenExpired(AuthError):
    """Access token expired and the provider doesn't support refreshing."""
    pass


class RefreshRejected(AuthError):
    """The platform rejected the refresh token."""

    def __init__(self, message: str, api_error: Optional[ApiError] = None):
        super().__init__(message)
        self.api_error = api_error


def is_fatal(error: BaseException) -> bool:
    """Return True if ``error`` means credentials are bad and retrying is pointless."""
    return isinstance(error, (AuthError, AuthenticatedRequestError))
