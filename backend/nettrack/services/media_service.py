"""
Read-only client for the TMDB metadata API.

Only discovery/search/detail endpoints are used; nothing is written back.
Titles are limited to what the configured watch provider streams in the
configured region.
"""

import logging
from typing import Any

import httpx

from nettrack.core.config import Settings, get_settings
from nettrack.core.errors import NotFoundError, TransientError, ValidationError
from nettrack.services.media_cache import MediaCache

logger = logging.getLogger(__name__)

MEDIA_TYPES = {"movie", "tv"}
PLACEHOLDER_POSTER = "https://via.placeholder.com/500x750?text=No+Image"
VIDEO_TYPES = {"Trailer", "Teaser"}


def _rating(vote_average: Any) -> int | None:
    if not vote_average:
        return None
    try:
        return round(float(vote_average) * 10)
    except (TypeError, ValueError):
        return None


class MediaService:
    def __init__(
        self,
        client: httpx.Client | None = None,
        cache: MediaCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self.cache = cache or MediaCache()

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.settings.tmdb_base_url,
                timeout=max(1.0, float(self.settings.tmdb_http_timeout_seconds)),
            )
        return self._client

    def _image_url(self, poster_path: str | None) -> str:
        if not poster_path:
            return PLACEHOLDER_POSTER
        return f"{self.settings.tmdb_image_base_url}{poster_path}"

    def _get_json(self, path: str, params: dict | None = None) -> dict:
        query = {"api_key": self.settings.tmdb_api_key, **(params or {})}
        try:
            response = self.client.get(path, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request %s failed: %s", path, exc)
            raise TransientError("tmdb", "request failed") from exc

        if response.status_code == 404:
            raise NotFoundError("Title not found")
        if response.status_code >= 400:
            logger.warning("TMDB request %s returned %s", path, response.status_code)
            raise TransientError("tmdb", f"HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientError("tmdb", "invalid JSON response") from exc
        if not isinstance(payload, dict):
            raise TransientError("tmdb", "unexpected response shape")
        return payload

    def _cached(self, key: str, loader) -> Any:
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.cache.set(key, value, self.settings.media_cache_ttl_seconds)
        return value

    def _discover_page(self, media_type: str, page: int) -> dict:
        return self._get_json(
            f"/discover/{media_type}",
            {
                "with_watch_providers": self.settings.tmdb_watch_provider,
                "watch_region": self.settings.tmdb_watch_region,
                "page": page,
            },
        )

    def _summarize(self, item: dict, media_type: str) -> dict:
        title = item.get("title") if media_type == "movie" else item.get("name")
        return {
            "id": item.get("id"),
            "title": title or "Untitled",
            "description": item.get("overview") or "No description available.",
            "image": self._image_url(item.get("poster_path")),
            "media_type": media_type,
            "rating": _rating(item.get("vote_average")),
        }

    def trending(self) -> list[dict]:
        def load() -> list[dict]:
            titles: list[dict] = []
            for media_type in ("movie", "tv"):
                page = self._discover_page(media_type, 1)
                titles.extend(self._summarize(item, media_type) for item in page.get("results") or [])
            return titles

        return self._cached("trending", load)

    def _discover_catalogue(self) -> list[dict]:
        def load() -> list[dict]:
            by_id: dict[int, dict] = {}
            max_pages = max(1, self.settings.tmdb_search_max_pages)
            for media_type in ("movie", "tv"):
                for page_number in range(1, max_pages + 1):
                    page = self._discover_page(media_type, page_number)
                    for item in page.get("results") or []:
                        # Later entries with the same TMDB id replace earlier ones.
                        by_id[item.get("id")] = self._summarize(item, media_type)
                    if int(page.get("page") or page_number) >= int(page.get("total_pages") or 0):
                        break
            return list(by_id.values())

        return self._cached("catalogue", load)

    def search(self, query: str) -> list[dict]:
        needle = query.strip().lower()
        if not needle:
            raise ValidationError("Search query is required")
        return [title for title in self._discover_catalogue() if needle in title["title"].lower()]

    def details(self, media_type: str, tmdb_id: int) -> dict:
        if media_type not in MEDIA_TYPES:
            raise ValidationError("Media type must be movie or tv")

        def load() -> dict:
            data = self._get_json(f"/{media_type}/{tmdb_id}")
            videos = self._get_json(f"/{media_type}/{tmdb_id}/videos")
            reviews = self._get_json(f"/{media_type}/{tmdb_id}/reviews")
            return {
                "id": tmdb_id,
                "media_type": media_type,
                "title": (data.get("title") if media_type == "movie" else data.get("name")) or "Untitled",
                "description": data.get("overview") or "",
                "genres": [genre.get("name") for genre in data.get("genres") or [] if genre.get("name")],
                "image": self._image_url(data.get("poster_path")),
                "rating": _rating(data.get("vote_average")),
                "videos": [
                    {"key": video.get("key"), "name": video.get("name"), "type": video.get("type")}
                    for video in videos.get("results") or []
                    if video.get("type") in VIDEO_TYPES
                ],
                "reviews": [
                    {"author": review.get("author"), "content": review.get("content")}
                    for review in reviews.get("results") or []
                ],
            }

        return self._cached(f"details:{media_type}:{tmdb_id}", load)

    def seasons(self, tv_id: int) -> list[dict]:
        def load() -> list[dict]:
            data = self._get_json(f"/tv/{tv_id}")
            return [
                {
                    "season_number": season.get("season_number"),
                    "episode_count": season.get("episode_count") or 0,
                }
                for season in data.get("seasons") or []
            ]

        return self._cached(f"seasons:{tv_id}", load)


media_service = MediaService()
