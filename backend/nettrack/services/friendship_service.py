import logging

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from nettrack.core.errors import ConflictError, NotFoundError, ValidationError
from nettrack.db.models import FriendRequest, Friendship, User
from nettrack.services.change_notifier import ChangeNotifier, change_notifier, feed_channel
from nettrack.services.user_service import normalize_username, require_user

logger = logging.getLogger(__name__)


def _user_brief(user: User) -> dict:
    return {
        "username": user.username,
        "name": user.name,
        "avatar_url": user.avatar_url,
    }


def _friendship_exists(db: Session, username: str, friend_username: str) -> bool:
    pair = db.scalar(
        select(Friendship.id).where(
            and_(
                Friendship.username == username,
                Friendship.friend_username == friend_username,
            )
        )
    )
    return pair is not None


def _pending_request(db: Session, sender: str, recipient: str) -> FriendRequest | None:
    return db.scalar(
        select(FriendRequest).where(
            and_(
                FriendRequest.sender_username == sender,
                FriendRequest.recipient_username == recipient,
            )
        )
    )


def _ensure_friendship_pair(db: Session, user_a: str, user_b: str) -> None:
    if user_a == user_b:
        return
    if not _friendship_exists(db, user_a, user_b):
        db.add(Friendship(username=user_a, friend_username=user_b))
    if not _friendship_exists(db, user_b, user_a):
        db.add(Friendship(username=user_b, friend_username=user_a))


class FriendshipService:
    def __init__(self, notifier: ChangeNotifier = change_notifier) -> None:
        self.notifier = notifier

    def friend_usernames(self, db: Session, username: str) -> list[str]:
        """Friends in the order the friendships were made."""
        return list(
            db.scalars(
                select(Friendship.friend_username)
                .where(Friendship.username == username)
                .order_by(Friendship.id.asc())
            ).all()
        )

    def are_friends(self, db: Session, username: str, other_username: str) -> bool:
        return _friendship_exists(db, username, other_username)

    def list_friends(self, db: Session, username: str) -> list[User]:
        users: list[User] = []
        for friend_username in self.friend_usernames(db, username):
            friend = db.get(User, friend_username)
            if friend:
                users.append(friend)
        return users

    def list_friend_requests(self, db: Session, username: str) -> list[str]:
        """Pending inbound requests, oldest first."""
        return list(
            db.scalars(
                select(FriendRequest.sender_username)
                .where(FriendRequest.recipient_username == username)
                .order_by(FriendRequest.id.asc())
            ).all()
        )

    def list_outgoing_requests(self, db: Session, username: str) -> list[str]:
        return list(
            db.scalars(
                select(FriendRequest.recipient_username)
                .where(FriendRequest.sender_username == username)
                .order_by(FriendRequest.id.asc())
            ).all()
        )

    def get_overview(self, db: Session, user: User) -> dict:
        return {
            "friends": [_user_brief(friend) for friend in self.list_friends(db, user.username)],
            "friend_requests": self.list_friend_requests(db, user.username),
            "outgoing_requests": self.list_outgoing_requests(db, user.username),
        }

    def list_notifications(self, db: Session, user: User) -> list[dict]:
        requests = db.scalars(
            select(FriendRequest)
            .where(FriendRequest.recipient_username == user.username)
            .order_by(FriendRequest.created_at.desc(), FriendRequest.id.desc())
        ).all()
        return [
            {
                "id": f"friend-request-{request.id}",
                "type": "friend_request",
                "message": f"{request.sender_username} sent you a friend request",
                "created_at": request.created_at,
                "meta": {"username": request.sender_username},
            }
            for request in requests
        ]

    def send_request(self, db: Session, sender_username: str, target_username: str) -> None:
        sender = require_user(db, sender_username)
        target = db.get(User, normalize_username(target_username))
        if not target:
            raise NotFoundError("User not found")
        if target.username == sender.username:
            raise ValidationError("Cannot send a friend request to yourself")
        if _friendship_exists(db, target.username, sender.username):
            raise ConflictError("Already friends")
        if _pending_request(db, sender.username, target.username):
            raise ConflictError("Friend request already sent")

        db.add(FriendRequest(sender_username=sender.username, recipient_username=target.username))
        db.commit()
        logger.info("Friend request %s -> %s", sender.username, target.username)
        self.notifier.publish(
            feed_channel(target.username),
            "friend_request",
            {"username": sender.username},
        )

    def accept_request(self, db: Session, username: str, requester_username: str) -> None:
        requester = normalize_username(requester_username)
        request = _pending_request(db, requester, username)
        if not request:
            raise NotFoundError("Friend request not found")
        if not db.get(User, requester):
            # The requester deleted their account after asking.
            db.delete(request)
            db.commit()
            raise NotFoundError("User not found")

        db.delete(request)
        _ensure_friendship_pair(db, username, requester)
        # A crossing request in the other direction is satisfied as well.
        reverse = _pending_request(db, username, requester)
        if reverse:
            db.delete(reverse)
        db.commit()
        logger.info("Friendship established between %s and %s", username, requester)
        self.notifier.publish_many(
            [feed_channel(username), feed_channel(requester)],
            "friend_added",
            {"usernames": sorted([username, requester])},
        )

    def reject_request(self, db: Session, username: str, requester_username: str) -> None:
        request = _pending_request(db, normalize_username(requester_username), username)
        if not request:
            raise NotFoundError("Friend request not found")
        db.delete(request)
        db.commit()

    def remove_friend(self, db: Session, username: str, friend_username: str) -> None:
        other = normalize_username(friend_username)
        result = db.execute(
            delete(Friendship).where(
                or_(
                    and_(Friendship.username == username, Friendship.friend_username == other),
                    and_(Friendship.username == other, Friendship.friend_username == username),
                )
            )
        )
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError("Not friends")
        db.commit()
        logger.info("Friendship removed between %s and %s", username, other)
        self.notifier.publish_many(
            [feed_channel(username), feed_channel(other)],
            "friend_removed",
            {"usernames": sorted([username, other])},
        )


friendship_service = FriendshipService()
