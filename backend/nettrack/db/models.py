from datetime import datetime, timezone
import json
from uuid import uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from nettrack.db.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores UTC and always hands back aware datetimes, SQLite included."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class User(Base):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(80))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    favorite_genres_json: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)

    @property
    def favorite_genres(self) -> list[str]:
        try:
            values = json.loads(self.favorite_genres_json or "[]")
        except ValueError:
            return []
        return [value for value in values if isinstance(value, str)]


class UserSession(Base):
    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    username: Mapped[str] = mapped_column(String(40), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class Friendship(Base):
    """One directed side of a friendship; accepted requests write both sides."""

    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("username", "friend_username", name="uq_friendships_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(40), index=True)
    friend_username: Mapped[str] = mapped_column(String(40), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class FriendRequest(Base):
    __tablename__ = "friend_requests"
    __table_args__ = (
        UniqueConstraint("sender_username", "recipient_username", name="uq_friend_requests_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_username: Mapped[str] = mapped_column(String(40), index=True)
    recipient_username: Mapped[str] = mapped_column(String(40), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (
        UniqueConstraint("owner_username", "activity_id", name="uq_activities_owner_activity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_username: Mapped[str] = mapped_column(String(40), index=True)
    # Unique per owner only; derived from the wall clock in milliseconds.
    activity_id: Mapped[int] = mapped_column(BigInteger)
    title: Mapped[str] = mapped_column(String(255))
    media_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    season: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timestamp_left_off: Mapped[str] = mapped_column(String(40))
    posted_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class ActivityLike(Base):
    __tablename__ = "activity_likes"
    __table_args__ = (UniqueConstraint("activity_ref", "username", name="uq_activity_likes_actor"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_ref: Mapped[int] = mapped_column(Integer, index=True)
    username: Mapped[str] = mapped_column(String(40), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class ActivityComment(Base):
    __tablename__ = "activity_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_ref: Mapped[int] = mapped_column(Integer, index=True)
    username: Mapped[str] = mapped_column(String(40), index=True)
    text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class ChatGroup(Base):
    __tablename__ = "chat_groups"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    name: Mapped[str] = mapped_column(String(80))
    created_by: Mapped[str] = mapped_column(String(40), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class ChatGroupMember(Base):
    __tablename__ = "chat_group_members"
    __table_args__ = (UniqueConstraint("group_id", "username", name="uq_chat_group_members_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(String(32), index=True)
    username: Mapped[str] = mapped_column(String(40), index=True)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(10), index=True)
    conversation_key: Mapped[str | None] = mapped_column(String(81), nullable=True, index=True)
    group_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    participants_json: Mapped[str] = mapped_column(Text, default="[]")
    user_name: Mapped[str] = mapped_column(String(40))
    text: Mapped[str] = mapped_column(Text)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utc_now)

    @property
    def participants(self) -> list[str]:
        try:
            values = json.loads(self.participants_json or "[]")
        except ValueError:
            return []
        return [value for value in values if isinstance(value, str)]
