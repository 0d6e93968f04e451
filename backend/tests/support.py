from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from nettrack.db import models  # noqa: F401
from nettrack.db.base import Base
from nettrack.services import user_service
from nettrack.services.friendship_service import FriendshipService


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def create_user(db: Session, username: str, *, password: str = "password123"):
    return user_service.create_user(
        db,
        name=username.title(),
        username=username,
        email=f"{username}@example.com",
        password=password,
    )


def make_friends(db: Session, friendships: FriendshipService, first: str, second: str) -> None:
    friendships.send_request(db, first, second)
    friendships.accept_request(db, second, first)
