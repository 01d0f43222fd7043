from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hndigest.models.strategy import StrategyConfig

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
    except Exception:
        return _DEFAULT_CORS.copy()


def _parse_int_list(v: Any, name: str) -> tuple[int, ...]:
    """Parse "10,20,50" (or a JSON list) into a tuple of ints. Raises ValueError on junk."""
    if isinstance(v, (list, tuple)):
        parts = list(v)
    else:
        s = str(v or "").strip()
        if s.startswith("["):
            import json
            parts = json.loads(s)
        else:
            parts = [x.strip() for x in s.split(",") if x.strip()]
    try:
        return tuple(int(p) for p in parts)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be a comma-separated list of integers, got {v!r}") from e


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

    # Public URLs: API host (links in emails) and static site (redirect targets)
    base_url: str = Field(default="http://localhost:8000", alias="BASE_URL")
    site_url: str = Field(default="http://localhost:3000", alias="SITE_URL")

    # Storage
    storage_backend: str = Field(default="mongo", alias="STORAGE_BACKEND")  # mongo | memory (tests, single process)
    storage_page_size: int = Field(default=100, alias="STORAGE_PAGE_SIZE")
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="hndigest", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Strategies offered to subscribers
    top_n_values_raw: str = Field(default="10,20,50", alias="TOP_N_VALUES")
    point_threshold_values_raw: str = Field(default="500,250,100", alias="POINT_THRESHOLD_VALUES")

    # Gmail sending (refresh-token credentials for the sender mailbox)
    email_from: str = Field(default="", alias="EMAIL_FROM")
    email_reply_to: str = Field(default="", alias="EMAIL_REPLY_TO")
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    gmail_refresh_token: str = Field(default="", alias="GMAIL_REFRESH_TOKEN")

    # Cloudflare Turnstile
    turnstile_secret_key: str = Field(default="", alias="TURNSTILE_SECRET_KEY")

    # Shared secret for the SES/SNS notification webhook
    notification_webhook_secret: str = Field(default="", alias="NOTIFICATION_WEBHOOK_SECRET")

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

    @property
    def top_n_values(self) -> tuple[int, ...]:
        return _parse_int_list(self.top_n_values_raw, "TOP_N_VALUES")

    @property
    def point_threshold_values(self) -> tuple[int, ...]:
        return _parse_int_list(self.point_threshold_values_raw, "POINT_THRESHOLD_VALUES")

    # Lifetimes
    pending_ttl_hours: int = Field(default=24, alias="PENDING_TTL_HOURS")
    record_ttl_days: int = Field(default=30, alias="RECORD_TTL_DAYS")

    # Daily run
    snapshot_hour: int = Field(default=5, alias="SNAPSHOT_HOUR")
    lookback_days: int = Field(default=2, alias="LOOKBACK_DAYS")
    send_concurrency: int = Field(default=10, alias="SEND_CONCURRENCY")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_strategy_config() -> StrategyConfig:
    """Allowed strategy values, validated once. Raises ValueError on a bad configuration."""
    settings = get_settings()
    return StrategyConfig(
        top_n_values=settings.top_n_values,
        point_threshold_values=settings.point_threshold_values,
    )
