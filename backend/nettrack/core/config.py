from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "NetTrack API"
    debug: bool = True
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    database_url: str = "sqlite:///./nettrack.db"
    redis_url: str = "redis://localhost:6379/0"

    secret_key: str = "change-this-secret-key"
    access_token_expire_minutes: int = 60 * 24
    websocket_require_auth_payload_token: bool = True
    websocket_allow_query_token: bool = False

    tmdb_api_key: str = ""
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    tmdb_image_base_url: str = "https://image.tmdb.org/t/p/w500"
    tmdb_watch_provider: int = 8
    tmdb_watch_region: str = "US"
    tmdb_search_max_pages: int = 5
    tmdb_http_timeout_seconds: float = 10.0
    media_cache_ttl_seconds: int = 60 * 15

    default_avatar_url: str = "https://via.placeholder.com/150"
    feed_poll_interval_seconds: float = 10.0
    chat_history_limit: int = 200
    max_chat_message_length: int = 1000
    max_comment_length: int = 500

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
