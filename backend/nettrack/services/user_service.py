from datetime import datetime, timezone
import json
import logging
import re

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from nettrack.core.config import get_settings
from nettrack.core.errors import ConflictError, NotFoundError, ValidationError
from nettrack.core.security import hash_password, verify_password
from nettrack.db.models import (
    Activity,
    ActivityComment,
    ActivityLike,
    ChatGroupMember,
    FriendRequest,
    Friendship,
    User,
    UserSession,
)
from nettrack.services.change_notifier import ChangeNotifier, change_notifier, feed_channel, inbox_channel

logger = logging.getLogger(__name__)

GENRE_CATALOGUE = (
    "Action & Adventure",
    "Anime",
    "Children & Family",
    "Classic",
    "Comedies",
    "Documentaries",
    "Dramas",
    "Horror",
    "Music",
    "Romantic",
    "Sci-fi & Fantasy",
    "Sports",
    "Thrillers",
    "TV Shows",
)

PROFILE_FIELDS = {"name", "email", "avatar_url"}
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,40}$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_username(username: str) -> str:
    return username.strip()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.get(User, normalize_username(username))


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == normalize_email(email)))


def username_exists(db: Session, username: str) -> bool:
    return get_user_by_username(db, username) is not None


def email_exists(db: Session, email: str) -> bool:
    return get_user_by_email(db, email) is not None


def require_user(db: Session, username: str) -> User:
    user = get_user_by_username(db, username)
    if not user:
        raise NotFoundError("User not found")
    return user


def create_user(db: Session, *, name: str, username: str, email: str, password: str) -> User:
    normalized_username = normalize_username(username)
    normalized_email = normalize_email(email)
    if not USERNAME_PATTERN.match(normalized_username):
        raise ValidationError("Username must be 3-40 letters, digits, dots, dashes or underscores")
    if not name.strip():
        raise ValidationError("Name is required")
    if username_exists(db, normalized_username):
        raise ConflictError("Username is already taken. Please choose a different one.")
    if email_exists(db, normalized_email):
        raise ConflictError("Email is already registered")

    user = User(
        username=normalized_username,
        name=name.strip(),
        email=normalized_email,
        hashed_password=hash_password(password),
        avatar_url=get_settings().default_avatar_url,
        favorite_genres_json="[]",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created user %s", user.username)
    return user


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    user = get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def update_profile(db: Session, user: User, updates: dict) -> User:
    unknown = set(updates) - PROFILE_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported profile fields: {', '.join(sorted(unknown))}")

    if "name" in updates:
        name = (updates["name"] or "").strip()
        if not name:
            raise ValidationError("Name is required")
        user.name = name
    if "email" in updates:
        email = normalize_email(updates["email"] or "")
        if not email:
            raise ValidationError("Email is required")
        existing = get_user_by_email(db, email)
        if existing and existing.username != user.username:
            raise ConflictError("Email is already registered")
        user.email = email
    if "avatar_url" in updates:
        user.avatar_url = updates["avatar_url"] or get_settings().default_avatar_url

    user.updated_at = _utc_now()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _store_genres(db: Session, user: User, genres: list[str]) -> User:
    user.favorite_genres_json = json.dumps(genres)
    user.updated_at = _utc_now()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_favorite_genre(db: Session, user: User, genre: str) -> User:
    normalized = genre.strip()
    if normalized not in GENRE_CATALOGUE:
        raise ValidationError("Unknown genre")
    genres = user.favorite_genres
    if normalized in genres:
        return user
    return _store_genres(db, user, [*genres, normalized])


def remove_favorite_genre(db: Session, user: User, genre: str) -> User:
    normalized = genre.strip()
    genres = user.favorite_genres
    if normalized not in genres:
        return user
    return _store_genres(db, user, [value for value in genres if value != normalized])


def list_users(db: Session, query: str = "", limit: int = 50) -> list[User]:
    statement = select(User)
    needle = query.strip()
    if needle:
        pattern = f"%{needle}%"
        statement = statement.where(or_(User.username.ilike(pattern), User.name.ilike(pattern)))
    return list(db.scalars(statement.order_by(User.username.asc()).limit(max(1, limit))).all())


def delete_user(db: Session, username: str, notifier: ChangeNotifier = change_notifier) -> None:
    """Delete an account and every relationship pointing at it."""
    user = require_user(db, username)
    deleted_username = user.username
    friend_usernames = list(
        db.scalars(select(Friendship.friend_username).where(Friendship.username == user.username)).all()
    )

    activity_refs = list(
        db.scalars(select(Activity.id).where(Activity.owner_username == user.username)).all()
    )
    if activity_refs:
        db.execute(delete(ActivityLike).where(ActivityLike.activity_ref.in_(activity_refs)))
        db.execute(delete(ActivityComment).where(ActivityComment.activity_ref.in_(activity_refs)))
        db.execute(delete(Activity).where(Activity.id.in_(activity_refs)))
    db.execute(delete(ActivityLike).where(ActivityLike.username == user.username))

    db.execute(
        delete(Friendship).where(
            or_(Friendship.username == user.username, Friendship.friend_username == user.username)
        )
    )
    db.execute(
        delete(FriendRequest).where(
            or_(
                FriendRequest.sender_username == user.username,
                FriendRequest.recipient_username == user.username,
            )
        )
    )
    db.execute(delete(ChatGroupMember).where(ChatGroupMember.username == user.username))
    db.execute(delete(UserSession).where(UserSession.username == user.username))
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s (%d friends detached)", username, len(friend_usernames))

    notifier.publish_many(
        [feed_channel(friend) for friend in friend_usernames],
        "friend_removed",
        {"username": username},
    )
    # Live sockets still holding this identity drop it.
    notifier.publish(inbox_channel(deleted_username), "session_revoked", {"session_id": None})


def create_user_session(db: Session, *, username: str, expires_at: datetime) -> UserSession:
    session = UserSession(username=username, expires_at=expires_at, last_seen_at=_utc_now())
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def get_active_user_session(db: Session, *, username: str, session_id: str) -> UserSession | None:
    session = db.scalar(
        select(UserSession).where(
            UserSession.id == session_id,
            UserSession.username == username,
            UserSession.revoked_at.is_(None),
        )
    )
    if not session:
        return None
    if session.expires_at <= _utc_now():
        return None
    return session


def touch_user_session(db: Session, session: UserSession) -> None:
    session.last_seen_at = _utc_now()
    db.add(session)
    db.commit()


def revoke_user_session(
    db: Session,
    *,
    username: str,
    session_id: str,
    notifier: ChangeNotifier = change_notifier,
) -> UserSession | None:
    session = db.scalar(
        select(UserSession).where(UserSession.id == session_id, UserSession.username == username)
    )
    if not session:
        return None
    if session.revoked_at is None:
        session.revoked_at = _utc_now()
        db.add(session)
        db.commit()
        db.refresh(session)
        notifier.publish(inbox_channel(username), "session_revoked", {"session_id": session_id})
    return session
