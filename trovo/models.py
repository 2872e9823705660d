"""Data models for the Trovo REST API."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class AudienceType(str, Enum):
    """Audience type of a channel."""

    FAMILY_FRIENDLY = "CHANNEL_AUDIENCE_TYPE_FAMILYFRIENDLY"
    TEEN = "CHANNEL_AUDIENCE_TYPE_TEEN"
    EIGHTEEN_PLUS = "CHANNEL_AUDIENCE_TYPE_EIGHTEENPLUS"


class User(BaseModel):
    """User returned by the get users API."""

    user_id: str
    channel_id: str
    username: str  # Unique across Trovo, last part of the channel url
    nickname: str  # Display name shown in chat


class GetUsersResponse(BaseModel):
    users: list[User] = Field(default_factory=list)


class SocialLink(BaseModel):
    """Social media link for a channel."""

    model_config = ConfigDict(populate_by_name=True)

    platform: str = Field(alias="type")
    url: str


class ChannelInfo(BaseModel):
    """Channel information returned by the get channel by id API."""

    is_live: bool = False
    category_id: str = ""
    category_name: str = ""
    live_title: str = ""
    audi_type: Union[AudienceType, str, None] = None
    language_code: str = ""
    thumbnail: str = ""  # Empty once the previous stream's thumbnail expired
    current_viewers: int = 0
    followers: int = 0
    streamer_info: str = ""
    profile_pic: str = ""
    channel_url: str = ""
    created_at: Optional[datetime] = None
    subscriber_num: int = 0
    username: str = ""
    social_links: list[SocialLink] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @field_validator("audi_type", mode="before")
    @classmethod
    def _known_audience(cls, value):
        try:
            return AudienceType(value)
        except ValueError:
            return value or None

    @field_validator("created_at", "started_at", "ended_at", mode="before")
    @classmethod
    def _blank_time_is_none(cls, value):
        # Offline channels report "" or "0" for stream times
        if value in ("", "0", 0):
            return None
        return value


class TokenGrant(BaseModel):
    """Response of the refresh token API."""

    access_token: str
    token_type: str = "OAuth"
    expires_in: int = 0
    refresh_token: Optional[str] = None
    issued_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), exclude=True
    )

    @computed_field
    @property
    def expires_at(self) -> Optional[datetime]:
        """Absolute expiry time, or None if the API didn't say."""
        if self.expires_in <= 0:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)
