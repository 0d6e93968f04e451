from pydantic import BaseModel, EmailStr, Field

from nettrack.schemas.auth import UserRead


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=80)
    email: EmailStr | None = None
    # Either a URL or an inline data URI from an uploaded image.
    avatar_url: str | None = Field(default=None, max_length=2_000_000)


class GenreRequest(BaseModel):
    genre: str = Field(min_length=1, max_length=40)


class ProfileRead(UserRead):
    pass


class UserBriefRead(BaseModel):
    username: str
    name: str
    avatar_url: str | None = None

    class Config:
        from_attributes = True
