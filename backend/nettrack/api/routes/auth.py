from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from nettrack.api.deps import get_current_session_id, get_current_user
from nettrack.core.security import create_access_token, token_expiry
from nettrack.db.models import User
from nettrack.db.session import get_db
from nettrack.schemas.auth import LoginRequest, RegisterRequest, TokenResponse, UserRead
from nettrack.services.user_service import (
    authenticate_user,
    create_user,
    create_user_session,
    revoke_user_session,
)

router = APIRouter()


def _issue_token(db: Session, user: User) -> TokenResponse:
    expires_at = token_expiry()
    session = create_user_session(db, username=user.username, expires_at=expires_at)
    token = create_access_token(user.username, session_id=session.id, expires_at=expires_at)
    return TokenResponse(access_token=token, session_id=session.id, expires_at=expires_at)


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> UserRead:
    if payload.password != payload.confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")
    user = create_user(
        db,
        name=payload.name,
        username=payload.username,
        email=payload.email,
        password=payload.password,
    )
    return UserRead.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse:
    user = authenticate_user(db, payload.email, payload.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return _issue_token(db, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    current_user: User = Depends(get_current_user),
    session_id: str = Depends(get_current_session_id),
    db: Session = Depends(get_db),
) -> None:
    revoke_user_session(db, username=current_user.username, session_id=session_id)
