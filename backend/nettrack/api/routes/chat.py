from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from nettrack.api.deps import get_current_user
from nettrack.db.models import User
from nettrack.db.session import get_db
from nettrack.schemas.chat import (
    ChatMessageCreateRequest,
    ChatMessageRead,
    ConversationRead,
    GroupCreateRequest,
    GroupRead,
)
from nettrack.services.chat_service import chat_service

router = APIRouter()


@router.get("/conversations", response_model=list[ConversationRead])
def list_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ConversationRead]:
    conversations = chat_service.list_conversations(db, current_user.username)
    return [ConversationRead.model_validate(conversation) for conversation in conversations]


@router.get("/messages", response_model=list[ChatMessageRead])
def list_messages(
    conversation: str = Query(default="global", max_length=120),
    limit: int | None = Query(default=None, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ChatMessageRead]:
    resolved = chat_service.resolve_conversation(db, current_user.username, conversation)
    messages = chat_service.list_messages(db, resolved, limit)
    return [ChatMessageRead.model_validate(message) for message in messages]


@router.post("/messages", response_model=ChatMessageRead, status_code=status.HTTP_201_CREATED)
def send_message(
    payload: ChatMessageCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ChatMessageRead:
    resolved = chat_service.resolve_conversation(db, current_user.username, payload.conversation)
    message = chat_service.send_message(db, current_user.username, resolved, payload.text)
    return ChatMessageRead.model_validate(message)


@router.get("/groups", response_model=list[GroupRead])
def list_groups(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[GroupRead]:
    return [GroupRead.model_validate(group) for group in chat_service.list_groups(db, current_user.username)]


@router.post("/groups", response_model=GroupRead, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> GroupRead:
    group = chat_service.create_group(db, current_user.username, payload.name, payload.members)
    return GroupRead.model_validate(group)
