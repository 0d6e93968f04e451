from pydantic import BaseModel, Field


class TitleSummaryRead(BaseModel):
    id: int
    title: str
    description: str
    image: str
    media_type: str
    rating: int | None = None


class VideoRead(BaseModel):
    key: str | None = None
    name: str | None = None
    type: str | None = None


class ReviewRead(BaseModel):
    author: str | None = None
    content: str | None = None


class TitleDetailsRead(BaseModel):
    id: int
    media_type: str
    title: str
    description: str
    genres: list[str] = Field(default_factory=list)
    image: str
    rating: int | None = None
    videos: list[VideoRead] = Field(default_factory=list)
    reviews: list[ReviewRead] = Field(default_factory=list)


class SeasonRead(BaseModel):
    season_number: int | None = None
    episode_count: int = 0
