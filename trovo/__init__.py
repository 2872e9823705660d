"""
Trovo API and chat client.
"""

from trovo.auth import AccessToken, AccessTokenOnly, ClientId, OAuthTokenProvider, TokenProvider
from trovo.chat import ChatMessage, ChatMessageStream, ChatState, DecodeError
from trovo.client import Client, open_chat
from trovo.config import ChatConfig, TrovoConfig, load_config
from trovo.errors import (
    AccessTokenExpired,
    ApiError,
    AuthError,
    AuthenticatedRequestError,
    ErrorStatus,
    RefreshRejected,
    RequestError,
    TrovoError,
)
from trovo.models import AudienceType, ChannelInfo, SocialLink, User

__version__ = "0.6.0"

__all__ = [
    "AccessToken",
    "AccessTokenOnly",
    "ClientId",
    "OAuthTokenProvider",
    "TokenProvider",
    "ChatMessage",
    "ChatMessageStream",
    "ChatState",
    "DecodeError",
    "Client",
    "open_chat",
    "ChatConfig",
    "TrovoConfig",
    "load_config",
    "AccessTokenExpired",
    "ApiError",
    "AuthError",
    "AuthenticatedRequestError",
    "ErrorStatus",
    "RefreshRejected",
    "RequestError",
    "TrovoError",
    "AudienceType",
    "ChannelInfo",
    "SocialLink",
    "User",
]
