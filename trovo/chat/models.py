"""
Message models for Trovo chat.

Trovo omits and nulls fields inconsistently across message types, so every
field that isn't needed to identify a message is optional here.
"""

import logging
from datetime import datetime
from enum import IntEnum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from trovo.chat.exceptions import DecodeError

logger = logging.getLogger(__name__)


class ChatToken(BaseModel):
    """Short-lived token authenticating one chat connection."""

    token: str

    def __repr__(self) -> str:
        return "ChatToken(token='***')"


class ChatMessageType(IntEnum):
    """Type of a chat message."""

    NORMAL = 0
    SPELL = 5  # Mana and elixir spells
    MAGIC_SUPER_CAP = 6
    MAGIC_COLORFUL = 7
    MAGIC_SPELL = 8
    MAGIC_BULLET_SCREEN = 9
    SUBSCRIPTION = 5001
    SYSTEM = 5002
    FOLLOW = 5003
    WELCOME = 5004
    GIFT_SUB = 5005  # Gift subs sent at random to one or more viewers
    GIFT_SUB_DETAILED = 5006
    EVENT = 5007  # Platform level activity
    RAID = 5008
    CUSTOM_SPELL = 5009


class Emote(BaseModel):
    """An emote used in a chat message. Image variants may be missing."""

    model_config = ConfigDict(extra="ignore")

    name: str
    url: Optional[str] = None
    gifp: Optional[str] = None
    webp: Optional[str] = None


class ChatMessage(BaseModel):
    """A single chat message."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: str
    nickname: str = Field(alias="nick_name")
    content: str
    message_type: Union[ChatMessageType, int] = Field(
        ChatMessageType.NORMAL, alias="type"
    )

    # System and anonymous messages have no sender
    sender_id: Optional[int] = None
    send_time: Optional[datetime] = None
    avatar: Optional[str] = None
    emotes: Optional[list[Emote]] = None

    user_name: Optional[str] = None
    uid: Optional[int] = None
    sub_lv: Optional[str] = None  # "sub_L1" for tier 1 subscribers
    medals: list[str] = Field(default_factory=list)
    decos: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    content_data: dict[str, Any] = Field(default_factory=dict)
    custom_role: Optional[str] = None  # JSON string with more detail than roles

    @field_validator("message_type", mode="before")
    @classmethod
    def _known_type(cls, value):
        if value is None:
            return ChatMessageType.NORMAL
        try:
            return ChatMessageType(int(value))
        except (TypeError, ValueError):
            return value

    @field_validator("avatar", "sub_lv", "custom_role", "user_name", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if value == "":
            return None
        return value

    @field_validator("sender_id", "uid", mode="before")
    @classmethod
    def _blank_id_is_none(cls, value):
        if value in ("", 0, "0"):
            return None
        return value

    @field_validator("medals", "decos", "roles", mode="before")
    @classmethod
    def _null_list(cls, value):
        return [] if value is None else value

    @field_validator("content_data", mode="before")
    @classmethod
    def _null_dict(cls, value):
        return {} if value is None else value

    @classmethod
    def from_raw(cls, data: Any) -> "ChatMessage":
        """
        Parse ChatMessage from a raw chat entry.

        Args:
            data: One entry of a CHAT frame's ``data.chats`` list

        Returns:
            Parsed ChatMessage instance

        Raises:
            DecodeError: If a required field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise DecodeError(
                f"chat message is not an object: {type(data).__name__}", raw=data
            )

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in e.errors()
            )
            raise DecodeError(f"malformed chat message ({fields})", raw=data) from e
