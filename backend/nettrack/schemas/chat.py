from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ChatMessageRead(BaseModel):
    id: int
    type: Literal["global", "dm", "group"]
    text: str
    user_name: str
    timestamp: datetime
    participants: list[str] = Field(default_factory=list)
    conversation_key: str | None = None
    group_id: str | None = None
    group_name: str | None = None
    is_system: bool = False


class ChatMessageCreateRequest(BaseModel):
    conversation: str = Field(default="global", max_length=120)
    text: str = Field(max_length=5000)


class GroupCreateRequest(BaseModel):
    name: str = Field(max_length=120)
    members: list[str] = Field(default_factory=list, max_length=50)


class GroupRead(BaseModel):
    id: str
    name: str
    created_by: str
    members: list[str]
    created_at: datetime


class ConversationRead(BaseModel):
    ref: str
    type: Literal["global", "dm", "group"]
    title: str
