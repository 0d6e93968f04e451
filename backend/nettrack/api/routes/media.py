from fastapi import APIRouter, Depends, Query

from nettrack.api.deps import get_current_user
from nettrack.db.models import User
from nettrack.schemas.media import SeasonRead, TitleDetailsRead, TitleSummaryRead
from nettrack.services.media_service import media_service

router = APIRouter()


@router.get("/trending", response_model=list[TitleSummaryRead])
def trending(current_user: User = Depends(get_current_user)) -> list[TitleSummaryRead]:
    return [TitleSummaryRead.model_validate(title) for title in media_service.trending()]


@router.get("/search", response_model=list[TitleSummaryRead])
def search(
    q: str = Query(min_length=1, max_length=120),
    current_user: User = Depends(get_current_user),
) -> list[TitleSummaryRead]:
    return [TitleSummaryRead.model_validate(title) for title in media_service.search(q)]


@router.get("/tv/{tv_id}/seasons", response_model=list[SeasonRead])
def seasons(tv_id: int, current_user: User = Depends(get_current_user)) -> list[SeasonRead]:
    return [SeasonRead.model_validate(season) for season in media_service.seasons(tv_id)]


@router.get("/{media_type}/{tmdb_id}", response_model=TitleDetailsRead)
def details(
    media_type: str,
    tmdb_id: int,
    current_user: User = Depends(get_current_user),
) -> TitleDetailsRead:
    return TitleDetailsRead.model_validate(media_service.details(media_type, tmdb_id))
