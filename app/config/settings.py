from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Vibe Check Notifier"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite:///./vibecheck.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Cron trigger
    CRON_SECRET: str = ""
    PING_CRON_MINUTES: int = 5
    PING_SINGLE_FLIGHT: bool = False
    PING_LOCK_TIMEOUT_SECONDS: int = 10 * 60

    # Web Push (VAPID). Read lazily by the dispatcher, never required at startup.
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_CLAIMS_SUB: str = "mailto:notifications@groupvibes.nl"
    PUSH_TTL_SECONDS: int = 24 * 60 * 60
    PUSH_TIMEOUT_SECONDS: float = 10.0
    PUSH_MAX_CONCURRENCY: int = 8

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY", "CRON_SECRET", mode="before")
    def strip_secret(cls, v: str | None) -> str:
        return (v or "").strip().strip('"').strip("'")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
