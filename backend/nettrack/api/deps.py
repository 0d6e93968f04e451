from datetime import datetime, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from nettrack.core.security import decode_access_token_payload
from nettrack.db.models import User
from nettrack.db.session import get_db
from nettrack.services.user_service import (
    get_active_user_session,
    get_user_by_username,
    touch_user_session,
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

SESSION_TOUCH_INTERVAL_SECONDS = 60


def get_access_token_payload(token: str = Depends(oauth2_scheme)) -> dict:
    payload = decode_access_token_payload(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    subject = payload.get("sub")
    session_id = payload.get("sid")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )
    if not isinstance(session_id, str) or not session_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token session missing",
        )
    return payload


def get_current_session_id(payload: dict = Depends(get_access_token_payload)) -> str:
    return payload["sid"].strip()


def get_current_user(
    payload: dict = Depends(get_access_token_payload),
    db: Session = Depends(get_db),
) -> User:
    user = get_user_by_username(db, payload["sub"])
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    user_session = get_active_user_session(db, username=user.username, session_id=payload["sid"].strip())
    if not user_session:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or revoked",
        )
    elapsed = (datetime.now(timezone.utc) - user_session.last_seen_at).total_seconds()
    if elapsed >= SESSION_TOUCH_INTERVAL_SECONDS:
        touch_user_session(db, user_session)
    return user
