from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="LINE Inbox API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    database_url_override: str | None = Field(
        default=None,
        env="DATABASE_URL",
        validation_alias=AliasChoices("DATABASE_URL", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over the DB_* parts",
    )
    database_user: str = Field(default="inbox", env="DB_USER")
    database_password: str = Field(default="inbox", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="inbox", env="DB_NAME")
    database_retry_attempts: int = Field(
        default=3,
        env="DB_RETRY_ATTEMPTS",
        description="Attempts made for a unit of work when the connection drops.",
    )
    database_retry_base_delay: float = Field(default=0.2, env="DB_RETRY_BASE_DELAY")
    database_retry_max_delay: float = Field(default=2.0, env="DB_RETRY_MAX_DELAY")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    app_base_url: str = Field(
        default="http://localhost:8000",
        env="APP_BASE_URL",
        description="Public base URL of this service, used to rewrite uploaded media links",
    )
    line_api_base_url: str = Field(default="https://api.line.me/v2/bot", env="LINE_API_BASE_URL")
    line_data_api_base_url: str = Field(
        default="https://api-data.line.me/v2/bot", env="LINE_DATA_API_BASE_URL"
    )
    line_request_timeout_seconds: float = Field(
        default=30.0,
        env="LINE_REQUEST_TIMEOUT_SECONDS",
        description="Upper bound for a single call to the LINE Messaging API.",
    )

    webhook_allow_unsigned: bool = Field(
        default=False,
        env="WEBHOOK_ALLOW_UNSIGNED",
        description="Accept webhook deliveries without an x-line-signature header (local testing only).",
    )

    preview_max_length: int = Field(default=100, env="PREVIEW_MAX_LENGTH")
    broadcast_batch_size: int = Field(
        default=500,
        env="BROADCAST_BATCH_SIZE",
        description="Recipients per multicast call; LINE rejects more than 500.",
    )
    broadcast_default_delay_ms: int = Field(default=100, env="BROADCAST_DEFAULT_DELAY_MS")
    broadcast_max_messages: int = Field(default=5, env="BROADCAST_MAX_MESSAGES")

    invite_expire_hours: int = Field(default=24 * 7, env="INVITE_EXPIRE_HOURS")

    event_stream_ping_seconds: float = Field(
        default=30.0,
        env="EVENT_STREAM_PING_SECONDS",
        description="Interval between keepalive comments on idle event streams.",
    )
    event_stream_queue_size: int = Field(
        default=256,
        env="EVENT_STREAM_QUEUE_SIZE",
        description="Frames buffered per stream before the connection is treated as broken.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[1] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("broadcast_batch_size")
    @classmethod
    def clamp_batch_size(cls, value: int) -> int:
        return max(1, min(int(value), 500))


@lru_cache
def get_settings() -> Settings:
    return Settings()
