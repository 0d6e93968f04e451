from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from nettrack.api.deps import get_current_user
from nettrack.db.models import User
from nettrack.db.session import get_db
from nettrack.schemas.activity import (
    ActivityCreateRequest,
    ActivityRead,
    ActivityUpdateRequest,
    CommentCreateRequest,
    CommentRead,
    FeedEntryRead,
    LikeToggleRead,
)
from nettrack.services.feed_service import feed_service

router = APIRouter()


@router.post("", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def record_activity(
    payload: ActivityCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityRead:
    return ActivityRead.model_validate(feed_service.record_activity(db, current_user, payload))


@router.get("/mine", response_model=list[ActivityRead])
def list_my_activities(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ActivityRead]:
    entries = feed_service.list_user_activities(db, current_user.username)
    return [ActivityRead.model_validate(entry) for entry in entries]


@router.get("/feed", response_model=list[FeedEntryRead])
def get_friends_feed(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[FeedEntryRead]:
    entries = feed_service.build_friends_feed(db, current_user.username)
    return [FeedEntryRead.model_validate(entry) for entry in entries]


@router.patch("/{activity_id}", response_model=ActivityRead)
def update_activity(
    activity_id: int,
    payload: ActivityUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityRead:
    entry = feed_service.update_activity(db, current_user, activity_id, payload)
    return ActivityRead.model_validate(entry)


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_activity(
    activity_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    feed_service.delete_activity(db, current_user, activity_id)


@router.post("/{owner_username}/{activity_id}/like", response_model=LikeToggleRead)
def toggle_like(
    owner_username: str,
    activity_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LikeToggleRead:
    result = feed_service.toggle_like(db, owner_username, activity_id, current_user.username)
    return LikeToggleRead.model_validate(result)


@router.post(
    "/{owner_username}/{activity_id}/comments",
    response_model=CommentRead,
    status_code=status.HTTP_201_CREATED,
)
def post_comment(
    owner_username: str,
    activity_id: int,
    payload: CommentCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CommentRead:
    comment = feed_service.post_comment(
        db,
        owner_username,
        activity_id,
        current_user.username,
        payload.text,
    )
    return CommentRead.model_validate(comment)


@router.delete(
    "/{owner_username}/{activity_id}/comments/{comment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_comment(
    owner_username: str,
    activity_id: int,
    comment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    feed_service.delete_comment(db, owner_username, activity_id, comment_id, current_user.username)


@router.delete(
    "/{owner_username}/{activity_id}/comments/at/{index}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_comment_at(
    owner_username: str,
    activity_id: int,
    index: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    feed_service.delete_comment_at(db, owner_username, activity_id, index, current_user.username)
