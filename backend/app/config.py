from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Lunexa Rooms API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:5173",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    database_user: str = Field(default="lunexa", env="DB_USER")
    database_password: str = Field(default="lunexa", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="lunexa", env="DB_NAME")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    room_code_prefixes: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["SA", "MAB"],
        env="ROOM_CODE_PREFIXES",
        description="Prefixes alternated when allocating public room codes",
    )
    room_code_floor: int = Field(
        default=1994181,
        env="ROOM_CODE_FLOOR",
        description="First sequence number handed out for every prefix",
    )
    room_code_max_attempts: int = Field(
        default=10,
        env="ROOM_CODE_MAX_ATTEMPTS",
        description="Uniqueness probes before falling back to a timestamp based code",
    )
    room_default_max_seats: int = Field(default=5, env="ROOM_DEFAULT_MAX_SEATS")
    room_min_seats: int = Field(default=2, env="ROOM_MIN_SEATS")
    room_max_seats: int = Field(default=20, env="ROOM_MAX_SEATS")
    room_max_per_owner: int = Field(
        default=5,
        env="ROOM_MAX_PER_OWNER",
        description="Maximum number of rooms a single user may own",
    )

    moderation_events_limit: int = Field(default=50, env="MODERATION_EVENTS_LIMIT")
    moderation_reason_max_length: int = Field(default=500, env="MODERATION_REASON_MAX_LENGTH")

    websocket_keepalive_timeout_seconds: int = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: int = Field(
        default=25, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    realtime_redis_url: str | None = Field(
        default=None,
        env="REALTIME_REDIS_URL",
        description="Redis URL used to fan out room events between API instances.",
    )
    realtime_nats_url: str | None = Field(
        default=None,
        env="REALTIME_NATS_URL",
        description="Optional NATS URL used instead of Redis for fan-out.",
    )
    realtime_namespace: str = Field(
        default="lunexa.realtime",
        env="REALTIME_NAMESPACE",
        description="Prefix applied to every broker channel or subject.",
    )
    realtime_backend_preference: str = Field(
        default="redis",
        env="REALTIME_BACKEND",
        description="Broker used for publishing room events (redis or nats).",
    )
    realtime_node_id: str | None = Field(
        default=None,
        env="REALTIME_NODE_ID",
        description="Stable identifier of this instance; generated when unset.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", "room_code_prefixes", mode="before")
    @classmethod
    def split_comma_separated(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("realtime_backend_preference", mode="before")
    @classmethod
    def normalize_backend(cls, value: str | None) -> str:
        if not value:
            return "redis"
        return str(value).strip().lower()


@lru_cache
def get_settings() -> Settings:
    return Settings()
