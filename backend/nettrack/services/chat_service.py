from dataclasses import dataclass
import json
import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from nettrack.core.config import get_settings
from nettrack.core.errors import ForbiddenError, NotFoundError, ValidationError
from nettrack.db.models import ChatGroup, ChatGroupMember, ChatMessage, User
from nettrack.services.change_notifier import ChangeNotifier, change_notifier, inbox_channel
from nettrack.services.user_service import normalize_username

logger = logging.getLogger(__name__)

MAX_GROUP_NAME_LENGTH = 80


def conversation_key(user_a: str, user_b: str) -> str:
    """DM identity: the lexicographically sorted pair of usernames."""
    first, second = sorted([user_a, user_b])
    return f"{first}:{second}"


@dataclass(frozen=True)
class Conversation:
    type: str
    key: str | None = None
    group_id: str | None = None

    @property
    def ref(self) -> str:
        if self.type == "dm":
            return f"dm:{self.key}"
        if self.type == "group":
            return f"group:{self.group_id}"
        return "global"

    @property
    def channel(self) -> str:
        return f"chat:{self.ref}"

    def participants_for_dm(self) -> list[str]:
        return self.key.split(":", 1) if self.key else []


GLOBAL_CONVERSATION = Conversation(type="global")


def _serialize_message(message: ChatMessage, group_names: dict[str, str] | None = None) -> dict:
    return {
        "id": message.id,
        "type": message.type,
        "text": message.text,
        "user_name": message.user_name,
        "timestamp": message.created_at,
        "participants": message.participants,
        "conversation_key": message.conversation_key,
        "group_id": message.group_id,
        "group_name": (group_names or {}).get(message.group_id or ""),
        "is_system": bool(message.is_system),
    }


class ChatService:
    def __init__(self, notifier: ChangeNotifier = change_notifier) -> None:
        self.notifier = notifier

    def _group_member_usernames(self, db: Session, group_id: str) -> list[str]:
        return list(
            db.scalars(
                select(ChatGroupMember.username)
                .where(ChatGroupMember.group_id == group_id)
                .order_by(ChatGroupMember.username.asc())
            ).all()
        )

    def resolve_conversation(self, db: Session, username: str, ref: str) -> Conversation:
        """
        Turn a client reference (``global``, ``dm:<user>``, ``group:<id>``)
        into a conversation the user is allowed to see.
        """
        normalized = (ref or "").strip()
        if normalized in {"", "global"}:
            return GLOBAL_CONVERSATION

        kind, _, target = normalized.partition(":")
        target = target.strip()
        if kind == "dm":
            if ":" in target:
                # Full conversation key, as returned in ``Conversation.ref``.
                pair = [normalize_username(part) for part in target.split(":", 1)]
                if username not in pair:
                    raise ForbiddenError("Not a participant in this conversation")
                target = pair[1] if pair[0] == username else pair[0]
            other = normalize_username(target)
            if not other:
                raise ValidationError("Direct messages need a username")
            if other == username:
                raise ValidationError("Cannot open a direct conversation with yourself")
            if not db.get(User, other):
                raise NotFoundError("User not found")
            return Conversation(type="dm", key=conversation_key(username, other))
        if kind == "group":
            group = db.get(ChatGroup, target)
            if not group:
                raise NotFoundError("Group not found")
            if username not in self._group_member_usernames(db, group.id):
                raise ForbiddenError("Not a member of this group")
            return Conversation(type="group", group_id=group.id)
        raise ValidationError(f"Unknown conversation: {normalized}")

    def list_messages(self, db: Session, conversation: Conversation, limit: int | None = None) -> list[dict]:
        history_limit = max(1, limit or get_settings().chat_history_limit)
        statement = select(ChatMessage).where(ChatMessage.type == conversation.type)
        if conversation.type == "dm":
            statement = statement.where(ChatMessage.conversation_key == conversation.key)
        elif conversation.type == "group":
            statement = statement.where(ChatMessage.group_id == conversation.group_id)
        rows = list(db.scalars(statement.order_by(ChatMessage.id.desc()).limit(history_limit)).all())
        rows.reverse()

        group_names: dict[str, str] = {}
        if conversation.type == "group":
            group = db.get(ChatGroup, conversation.group_id)
            if group:
                group_names[group.id] = group.name
        return [_serialize_message(row, group_names) for row in rows]

    def send_message(self, db: Session, username: str, conversation: Conversation, text: str) -> dict:
        clean_text = (text or "").strip()
        if not clean_text:
            raise ValidationError("Cannot send an empty message")
        max_length = get_settings().max_chat_message_length
        if len(clean_text) > max_length:
            clean_text = clean_text[:max_length]

        participants: list[str] = []
        group_names: dict[str, str] = {}
        if conversation.type == "dm":
            participants = conversation.participants_for_dm()
        elif conversation.type == "group":
            participants = self._group_member_usernames(db, conversation.group_id)
            if username not in participants:
                raise ForbiddenError("Not a member of this group")
            group = db.get(ChatGroup, conversation.group_id)
            if group:
                group_names[group.id] = group.name

        message = ChatMessage(
            type=conversation.type,
            conversation_key=conversation.key,
            group_id=conversation.group_id,
            participants_json=json.dumps(participants),
            user_name=username,
            text=clean_text,
            is_system=False,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        payload = _serialize_message(message, group_names)
        self.notifier.publish(conversation.channel, "message", payload)
        if conversation.type == "dm":
            for participant in participants:
                if participant != username:
                    self.notifier.publish(
                        inbox_channel(participant),
                        "direct_message",
                        {"from": username, "conversation": conversation.ref},
                    )
        return payload

    def create_group(self, db: Session, creator: str, name: str, members: list[str]) -> dict:
        group_name = (name or "").strip()
        if not group_name:
            raise ValidationError("Group name is required")
        if len(group_name) > MAX_GROUP_NAME_LENGTH:
            raise ValidationError(f"Group name is longer than {MAX_GROUP_NAME_LENGTH} characters")

        usernames = {normalize_username(member) for member in members if member and member.strip()}
        usernames.add(creator)
        canonical = sorted(usernames)
        if len(canonical) < 2:
            raise ValidationError("A group needs at least one other member")
        missing = [member for member in canonical if not db.get(User, member)]
        if missing:
            raise NotFoundError(f"User not found: {', '.join(missing)}")

        group = ChatGroup(name=group_name, created_by=creator)
        db.add(group)
        db.flush()
        for member in canonical:
            db.add(ChatGroupMember(group_id=group.id, username=member))
        db.add(
            ChatMessage(
                type="group",
                group_id=group.id,
                participants_json=json.dumps(canonical),
                user_name=creator,
                text=f"{creator} created the group {group_name}",
                is_system=True,
            )
        )
        db.commit()
        db.refresh(group)
        logger.info("Group %s (%s) created by %s with %d members", group.id, group_name, creator, len(canonical))

        summary = {
            "id": group.id,
            "name": group.name,
            "created_by": group.created_by,
            "members": canonical,
            "created_at": group.created_at,
        }
        self.notifier.publish_many(
            [inbox_channel(member) for member in canonical],
            "group_created",
            {"group_id": group.id, "name": group.name},
        )
        return summary

    def list_groups(self, db: Session, username: str) -> list[dict]:
        group_ids = list(
            db.scalars(select(ChatGroupMember.group_id).where(ChatGroupMember.username == username)).all()
        )
        if not group_ids:
            return []
        groups = db.scalars(
            select(ChatGroup).where(ChatGroup.id.in_(group_ids)).order_by(ChatGroup.created_at.asc())
        ).all()
        return [
            {
                "id": group.id,
                "name": group.name,
                "created_by": group.created_by,
                "members": self._group_member_usernames(db, group.id),
                "created_at": group.created_at,
            }
            for group in groups
        ]

    def list_conversations(self, db: Session, username: str) -> list[dict]:
        """Global first, then DMs the user has taken part in, then groups."""
        conversations: list[dict] = [{"ref": "global", "type": "global", "title": "Global chat"}]
        dm_keys = db.scalars(
            select(ChatMessage.conversation_key)
            .where(
                ChatMessage.type == "dm",
                or_(
                    ChatMessage.conversation_key.like(f"{username}:%"),
                    ChatMessage.conversation_key.like(f"%:{username}"),
                ),
            )
            .distinct()
        ).all()
        for key in sorted(key for key in dm_keys if key):
            participants = key.split(":", 1)
            if username not in participants:
                continue
            other = participants[1] if participants[0] == username else participants[0]
            conversations.append({"ref": f"dm:{other}", "type": "dm", "title": other})
        for group in self.list_groups(db, username):
            conversations.append(
                {"ref": f"group:{group['id']}", "type": "group", "title": group["name"]}
            )
        return conversations


chat_service = ChatService()
