from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from nettrack.api.deps import get_current_user
from nettrack.db.models import User
from nettrack.db.session import get_db
from nettrack.schemas.activity import PublicProfileRead
from nettrack.schemas.profile import GenreRequest, ProfileRead, ProfileUpdateRequest, UserBriefRead
from nettrack.services.feed_service import feed_service
from nettrack.services.user_service import (
    GENRE_CATALOGUE,
    add_favorite_genre,
    delete_user,
    list_users,
    remove_favorite_genre,
    update_profile,
)

router = APIRouter()


@router.get("/me", response_model=ProfileRead)
def get_my_profile(current_user: User = Depends(get_current_user)) -> ProfileRead:
    return ProfileRead.model_validate(current_user)


@router.patch("/me", response_model=ProfileRead)
def update_my_profile(
    payload: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileRead:
    user = update_profile(db, current_user, payload.model_dump(exclude_unset=True))
    return ProfileRead.model_validate(user)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_my_account(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    delete_user(db, current_user.username)


@router.get("/genres", response_model=list[str])
def list_genres() -> list[str]:
    return list(GENRE_CATALOGUE)


@router.post("/me/genres", response_model=ProfileRead)
def add_my_genre(
    payload: GenreRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return ProfileRead.model_validate(add_favorite_genre(db, current_user, payload.genre))


@router.delete("/me/genres/{genre}", response_model=ProfileRead)
def remove_my_genre(
    genre: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return ProfileRead.model_validate(remove_favorite_genre(db, current_user, genre))


@router.get("/users", response_model=list[UserBriefRead])
def search_users(
    q: str = Query(default="", max_length=40),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserBriefRead]:
    users = list_users(db, q)
    return [UserBriefRead.model_validate(user) for user in users if user.username != current_user.username]


@router.get("/users/{username}", response_model=PublicProfileRead)
def get_user_profile(
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PublicProfileRead:
    return PublicProfileRead.model_validate(feed_service.get_public_profile(db, username))
