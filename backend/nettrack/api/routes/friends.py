from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from nettrack.api.deps import get_current_user
from nettrack.db.models import User
from nettrack.db.session import get_db
from nettrack.schemas.profile import UserBriefRead
from nettrack.schemas.social import FriendRequestCreateRequest, NotificationRead, SocialOverviewRead
from nettrack.services.friendship_service import friendship_service

router = APIRouter()


@router.get("", response_model=list[UserBriefRead])
def list_friends(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserBriefRead]:
    friends = friendship_service.list_friends(db, current_user.username)
    return [UserBriefRead.model_validate(friend) for friend in friends]


@router.get("/overview", response_model=SocialOverviewRead)
def get_overview(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SocialOverviewRead:
    return SocialOverviewRead.model_validate(friendship_service.get_overview(db, current_user))


@router.get("/notifications", response_model=list[NotificationRead])
def list_notifications(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    notifications = friendship_service.list_notifications(db, current_user)
    return [NotificationRead.model_validate(notification) for notification in notifications]


@router.post("/requests", status_code=status.HTTP_201_CREATED)
def send_friend_request(
    payload: FriendRequestCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    friendship_service.send_request(db, current_user.username, payload.username)
    return {"ok": True}


@router.post("/requests/{username}/accept")
def accept_friend_request(
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    friendship_service.accept_request(db, current_user.username, username)
    return {"ok": True}


@router.post("/requests/{username}/reject")
def reject_friend_request(
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    friendship_service.reject_request(db, current_user.username, username)
    return {"ok": True}


@router.delete("/{username}", status_code=status.HTTP_204_NO_CONTENT)
def remove_friend(
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    friendship_service.remove_friend(db, current_user.username, username)
