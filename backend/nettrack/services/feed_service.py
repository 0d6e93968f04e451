from datetime import datetime, timezone
import logging
import time

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nettrack.core.config import get_settings
from nettrack.core.errors import ForbiddenError, NotFoundError, ValidationError
from nettrack.db.models import Activity, ActivityComment, ActivityLike, User
from nettrack.schemas.activity import ActivityCreateRequest, ActivityUpdateRequest
from nettrack.services.change_notifier import ChangeNotifier, change_notifier, feed_channel
from nettrack.services.friendship_service import FriendshipService, friendship_service
from nettrack.services.user_service import require_user

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _wall_clock_millis() -> int:
    return int(time.time() * 1000)


def _serialize_comment(comment: ActivityComment) -> dict:
    return {
        "id": comment.id,
        "username": comment.username,
        "text": comment.text,
        "timestamp": comment.created_at,
    }


def _serialize_activity(activity: Activity, likes: list[str], comments: list[ActivityComment]) -> dict:
    return {
        "id": activity.activity_id,
        "owner_username": activity.owner_username,
        "title": activity.title,
        "media_type": activity.media_type,
        "tmdb_id": activity.tmdb_id,
        "season": activity.season,
        "episode": activity.episode,
        "timestamp_left_off": activity.timestamp_left_off,
        "timestamp_posted": activity.posted_at,
        "likes": likes,
        "comments": [_serialize_comment(comment) for comment in comments],
    }


class FeedService:
    def __init__(
        self,
        notifier: ChangeNotifier = change_notifier,
        friendships: FriendshipService = friendship_service,
    ) -> None:
        self.notifier = notifier
        self.friendships = friendships

    def _get_activity(self, db: Session, owner_username: str, activity_id: int) -> Activity:
        activity = db.scalar(
            select(Activity).where(
                Activity.owner_username == owner_username,
                Activity.activity_id == activity_id,
            )
        )
        if not activity:
            raise NotFoundError("Activity not found")
        return activity

    def _require_engagement_access(self, db: Session, owner_username: str, actor: str) -> None:
        if actor == owner_username:
            return
        if not self.friendships.are_friends(db, owner_username, actor):
            raise ForbiddenError("Only friends can interact with this activity")

    def _next_activity_id(self, db: Session, owner_username: str) -> int:
        candidate = _wall_clock_millis()
        latest = db.scalar(
            select(func.max(Activity.activity_id)).where(Activity.owner_username == owner_username)
        )
        if latest is not None and latest >= candidate:
            return latest + 1
        return candidate

    def _hydrate(self, db: Session, activities: list[Activity]) -> list[dict]:
        refs = [activity.id for activity in activities]
        likes_by_ref: dict[int, list[str]] = {ref: [] for ref in refs}
        comments_by_ref: dict[int, list[ActivityComment]] = {ref: [] for ref in refs}
        if refs:
            for like in db.scalars(
                select(ActivityLike)
                .where(ActivityLike.activity_ref.in_(refs))
                .order_by(ActivityLike.id.asc())
            ).all():
                likes_by_ref[like.activity_ref].append(like.username)
            for comment in db.scalars(
                select(ActivityComment)
                .where(ActivityComment.activity_ref.in_(refs))
                .order_by(ActivityComment.id.asc())
            ).all():
                comments_by_ref[comment.activity_ref].append(comment)
        return [
            _serialize_activity(activity, likes_by_ref[activity.id], comments_by_ref[activity.id])
            for activity in activities
        ]

    def _publish(self, db: Session, owner_username: str, event: str, payload: dict) -> None:
        channels = [feed_channel(owner_username)] + [
            feed_channel(friend) for friend in self.friendships.friend_usernames(db, owner_username)
        ]
        self.notifier.publish_many(channels, event, {"owner_username": owner_username, **payload})

    def get_activity(self, db: Session, owner_username: str, activity_id: int) -> dict:
        activity = self._get_activity(db, owner_username, activity_id)
        return self._hydrate(db, [activity])[0]

    def record_activity(self, db: Session, owner: User, payload: ActivityCreateRequest) -> dict:
        title = payload.title.strip()
        position = payload.timestamp_left_off.strip()
        if not title:
            raise ValidationError("Title is required")
        if not position:
            raise ValidationError("Timestamp left off is required")
        if payload.media_type == "tv" and (payload.season is None or payload.episode is None):
            raise ValidationError("Season and episode are required for TV shows")

        is_tv = payload.media_type == "tv"
        activity = Activity(
            owner_username=owner.username,
            activity_id=self._next_activity_id(db, owner.username),
            title=title,
            media_type=payload.media_type,
            tmdb_id=payload.tmdb_id,
            season=payload.season if is_tv else None,
            episode=payload.episode if is_tv else None,
            timestamp_left_off=position,
            posted_at=_utc_now(),
            updated_at=_utc_now(),
        )
        db.add(activity)
        db.commit()
        db.refresh(activity)
        logger.info("Recorded activity %s for %s", activity.activity_id, owner.username)
        self._publish(db, owner.username, "activity_added", {"activity_id": activity.activity_id})
        return _serialize_activity(activity, [], [])

    def update_activity(
        self,
        db: Session,
        owner: User,
        activity_id: int,
        payload: ActivityUpdateRequest,
    ) -> dict:
        activity = self._get_activity(db, owner.username, activity_id)
        updates = payload.model_dump(exclude_unset=True)
        if "timestamp_left_off" in updates:
            position = (updates["timestamp_left_off"] or "").strip()
            if not position:
                raise ValidationError("Timestamp left off is required")
            activity.timestamp_left_off = position
        if activity.media_type == "tv":
            if updates.get("season") is not None:
                activity.season = updates["season"]
            if updates.get("episode") is not None:
                activity.episode = updates["episode"]
        activity.updated_at = _utc_now()
        db.add(activity)
        db.commit()
        db.refresh(activity)
        self._publish(db, owner.username, "activity_updated", {"activity_id": activity_id})
        return self._hydrate(db, [activity])[0]

    def delete_activity(self, db: Session, owner: User, activity_id: int) -> None:
        activity = self._get_activity(db, owner.username, activity_id)
        db.execute(delete(ActivityLike).where(ActivityLike.activity_ref == activity.id))
        db.execute(delete(ActivityComment).where(ActivityComment.activity_ref == activity.id))
        db.delete(activity)
        db.commit()
        self._publish(db, owner.username, "activity_deleted", {"activity_id": activity_id})

    def list_user_activities(self, db: Session, username: str) -> list[dict]:
        """A single profile's history, newest first."""
        activities = db.scalars(
            select(Activity)
            .where(Activity.owner_username == username)
            .order_by(Activity.posted_at.desc(), Activity.activity_id.desc())
        ).all()
        return self._hydrate(db, list(activities))

    def get_public_profile(self, db: Session, username: str) -> dict:
        user = require_user(db, username)
        return {
            "username": user.username,
            "name": user.name,
            "avatar_url": user.avatar_url,
            "favorite_genres": user.favorite_genres,
            "history": self.list_user_activities(db, user.username),
        }

    def build_friends_feed(self, db: Session, username: str) -> list[dict]:
        """
        Flatten every friend's activities into one list.

        Entries keep the order they are encountered in: friends in the order
        the friendships were made, each friend's activities in feed order.
        Unlike a profile's history the result is not sorted by posted time.
        """
        default_avatar = get_settings().default_avatar_url
        feed: list[dict] = []
        seen: set[tuple[int, str]] = set()
        for friend in self.friendships.list_friends(db, username):
            activities = db.scalars(
                select(Activity)
                .where(Activity.owner_username == friend.username)
                .order_by(Activity.id.asc())
            ).all()
            for entry in self._hydrate(db, list(activities)):
                key = (entry["id"], friend.username)
                if key in seen:
                    continue
                seen.add(key)
                entry["friend_username"] = friend.username
                entry["friend_name"] = friend.name
                entry["friend_avatar"] = friend.avatar_url or default_avatar
                feed.append(entry)
        return feed

    def toggle_like(self, db: Session, owner_username: str, activity_id: int, actor: str) -> dict:
        activity = self._get_activity(db, owner_username, activity_id)
        self._require_engagement_access(db, owner_username, actor)

        existing = db.scalar(
            select(ActivityLike).where(
                ActivityLike.activity_ref == activity.id,
                ActivityLike.username == actor,
            )
        )
        if existing:
            db.delete(existing)
            liked = False
        else:
            db.add(ActivityLike(activity_ref=activity.id, username=actor))
            liked = True
        try:
            db.commit()
        except IntegrityError:
            # Lost a race against the same actor liking from another tab.
            db.rollback()
            liked = True

        likes = list(
            db.scalars(
                select(ActivityLike.username)
                .where(ActivityLike.activity_ref == activity.id)
                .order_by(ActivityLike.id.asc())
            ).all()
        )
        self._publish(
            db,
            owner_username,
            "activity_liked" if liked else "activity_unliked",
            {"activity_id": activity_id, "username": actor},
        )
        return {"liked": liked, "likes": likes}

    def post_comment(
        self,
        db: Session,
        owner_username: str,
        activity_id: int,
        actor: str,
        text: str,
    ) -> dict:
        clean_text = (text or "").strip()
        if not clean_text:
            raise ValidationError("Comment cannot be empty")
        max_length = get_settings().max_comment_length
        if len(clean_text) > max_length:
            raise ValidationError(f"Comment is longer than {max_length} characters")

        activity = self._get_activity(db, owner_username, activity_id)
        self._require_engagement_access(db, owner_username, actor)

        comment = ActivityComment(activity_ref=activity.id, username=actor, text=clean_text)
        db.add(comment)
        db.commit()
        db.refresh(comment)
        self._publish(
            db,
            owner_username,
            "comment_added",
            {"activity_id": activity_id, "comment_id": comment.id},
        )
        return _serialize_comment(comment)

    def delete_comment(
        self,
        db: Session,
        owner_username: str,
        activity_id: int,
        comment_id: int,
        actor: str,
    ) -> None:
        activity = self._get_activity(db, owner_username, activity_id)
        comment = db.get(ActivityComment, comment_id)
        if not comment or comment.activity_ref != activity.id:
            raise NotFoundError("Comment not found")
        if comment.username != actor:
            raise ForbiddenError("Only the author can delete this comment")
        db.delete(comment)
        db.commit()
        self._publish(
            db,
            owner_username,
            "comment_deleted",
            {"activity_id": activity_id, "comment_id": comment_id},
        )

    def delete_comment_at(
        self,
        db: Session,
        owner_username: str,
        activity_id: int,
        index: int,
        actor: str,
    ) -> None:
        """Positional delete; resolves the index to a comment id first."""
        activity = self._get_activity(db, owner_username, activity_id)
        comment_ids = list(
            db.scalars(
                select(ActivityComment.id)
                .where(ActivityComment.activity_ref == activity.id)
                .order_by(ActivityComment.id.asc())
            ).all()
        )
        if index < 0 or index >= len(comment_ids):
            raise NotFoundError("Comment not found")
        self.delete_comment(db, owner_username, activity_id, comment_ids[index], actor)


feed_service = FeedService()
