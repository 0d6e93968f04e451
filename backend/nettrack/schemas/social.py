from datetime import datetime

from pydantic import BaseModel, Field

from nettrack.schemas.profile import UserBriefRead


class FriendRequestCreateRequest(BaseModel):
    username: str = Field(min_length=3, max_length=40)


class SocialOverviewRead(BaseModel):
    friends: list[UserBriefRead]
    friend_requests: list[str]
    outgoing_requests: list[str]


class NotificationRead(BaseModel):
    id: str
    type: str
    message: str
    created_at: datetime
    meta: dict[str, str] = Field(default_factory=dict)
