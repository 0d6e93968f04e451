from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ActivityCreateRequest(BaseModel):
    title: str = Field(max_length=255)
    timestamp_left_off: str = Field(max_length=40)
    media_type: Literal["movie", "tv"] | None = None
    tmdb_id: int | None = None
    season: int | None = Field(default=None, ge=0)
    episode: int | None = Field(default=None, ge=1)


class ActivityUpdateRequest(BaseModel):
    timestamp_left_off: str | None = Field(default=None, max_length=40)
    season: int | None = Field(default=None, ge=0)
    episode: int | None = Field(default=None, ge=1)


class CommentCreateRequest(BaseModel):
    text: str = Field(max_length=2000)


class CommentRead(BaseModel):
    id: int
    username: str
    text: str
    timestamp: datetime


class ActivityRead(BaseModel):
    id: int
    owner_username: str
    title: str
    media_type: str | None = None
    tmdb_id: int | None = None
    season: int | None = None
    episode: int | None = None
    timestamp_left_off: str
    timestamp_posted: datetime
    likes: list[str] = Field(default_factory=list)
    comments: list[CommentRead] = Field(default_factory=list)


class FeedEntryRead(ActivityRead):
    friend_username: str
    friend_name: str
    friend_avatar: str | None = None


class LikeToggleRead(BaseModel):
    liked: bool
    likes: list[str]


class PublicProfileRead(BaseModel):
    username: str
    name: str
    avatar_url: str | None = None
    favorite_genres: list[str] = Field(default_factory=list)
    history: list[ActivityRead] = Field(default_factory=list)
