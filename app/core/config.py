from functools import lru_cache
from typing import Any, List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # Backends: "mongo" / "redis" in production, "memory" for local runs and tests
    store_backend: Literal["mongo", "memory"] = Field(default="mongo", alias="STORE_BACKEND")
    realtime_backend: Literal["redis", "memory"] = Field(default="redis", alias="REALTIME_BACKEND")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="advisorpro", alias="MONGODB_DB_NAME")

    # Redis (change feed)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    realtime_channel: str = Field(default="advisorpro:changes", alias="REALTIME_CHANNEL")
    realtime_reconnect_min_sec: float = Field(default=1.0, alias="REALTIME_RECONNECT_MIN_SEC")
    realtime_reconnect_max_sec: float = Field(default=60.0, alias="REALTIME_RECONNECT_MAX_SEC")

    # Billing webhook (HMAC-SHA256 of the raw body)
    billing_webhook_secret: str = Field(default="", alias="BILLING_WEBHOOK_SECRET")

    # Shared token for the package-generation worker
    worker_token: str = Field(default="", alias="WORKER_TOKEN")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Credits
    low_credit_threshold: int = Field(default=5, alias="LOW_CREDIT_THRESHOLD")
    signup_general_credits: int = Field(default=0, alias="SIGNUP_GENERAL_CREDITS")
    signup_health_score_credits: int = Field(default=5, alias="SIGNUP_HEALTH_SCORE_CREDITS")

    # Package queue
    default_estimated_minutes: int = Field(default=10, alias="DEFAULT_ESTIMATED_MINUTES")


@lru_cache
def get_settings() -> Settings:
    return Settings()
