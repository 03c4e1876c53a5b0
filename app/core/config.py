from functools import lru_cache
from typing import Any, List, Literal

from pydantic import Field, field_validator
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
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="wallet", alias="MONGODB_DB_NAME")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # PhonePe
    phonepe_merchant_id: str = Field(default="", alias="PHONEPE_MERCHANT_ID")
    phonepe_salt_key: str = Field(default="", alias="PHONEPE_SALT_KEY")
    phonepe_salt_index: str = Field(default="", alias="PHONEPE_SALT_INDEX")
    phonepe_env: str = Field(default="UAT", alias="PHONEPE_ENV")
    phonepe_timeout_seconds: float = Field(default=20.0, alias="PHONEPE_TIMEOUT_SECONDS", gt=0)

    # Redirect targets handed to the gateway
    frontend_url: str = Field(default="", alias="FRONTEND_URL")
    backend_url: str = Field(default="", alias="BACKEND_URL")

    # Recharge rules
    recharge_verify_mode: Literal["poll", "callback"] = Field(default="poll", alias="RECHARGE_VERIFY_MODE")
    recharge_max_amount: int = Field(default=100_000, alias="RECHARGE_MAX_AMOUNT", ge=1)
    recharge_reconcile_after_minutes: int = Field(default=15, alias="RECHARGE_RECONCILE_AFTER_MINUTES", ge=1)
    # Not-found checks before a stale recharge is given up as failed (12 x 5 min cron = 1 hour)
    recharge_reconcile_max_attempts: int = Field(default=12, alias="RECHARGE_RECONCILE_MAX_ATTEMPTS", ge=1)
    recharge_reconcile_batch_size: int = Field(default=100, alias="RECHARGE_RECONCILE_BATCH_SIZE", ge=1)

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @field_validator(
        "phonepe_merchant_id",
        "phonepe_salt_key",
        "phonepe_salt_index",
        "phonepe_env",
        "frontend_url",
        "backend_url",
        mode="before",
    )
    @classmethod
    def _strip(cls, v: Any) -> Any:
        # Trailing whitespace in credentials breaks the checksum silently
        return v.strip() if isinstance(v, str) else v

    @field_validator("recharge_verify_mode", mode="before")
    @classmethod
    def _normalize_verify_mode(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))


@lru_cache
def get_settings() -> Settings:
    return Settings()
