from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    log_feed_events: bool = False
    app_name: str = "Chat Sync Core"
    api_v1_prefix: str = "/v1"
    database_url: str = "sqlite:///./chatcore.db"

    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:8081"])

    message_max_length: int = 2000
    friend_request_rate_limit_window_seconds: int = 60
    friend_request_rate_limit_max_requests: int = 20

    realtime_dispatcher_enabled: bool = True
    realtime_dispatcher_poll_ms: int = 200
    realtime_dispatcher_batch_size: int = 100
    feed_queue_size: int = 200

    ws_heartbeat_sec: int = 25
    ws_idle_timeout_sec: int = 90
    ws_max_command_bytes: int = 4096
    ws_rate_limit_window_sec: int = 10
    ws_rate_limit_max_commands: int = 30
    ws_max_subscriptions_per_connection: int = 200

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()
