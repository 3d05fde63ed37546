from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production", "test"] = "development"
    database_url: str = "sqlite+aiosqlite:///./riselocal.db"
    database_echo: bool = False
    log_level: str = "INFO"
    tracing_enabled: bool = True

    # Application URLs
    frontend_url: str = "http://localhost:3000"
    api_base_url: str = "http://localhost:8000"

    # Internal API security
    admin_api_key: str = ""

    # Redemption codes (time-locked model)
    redemption_code_length: int = Field(default=6, ge=4, le=16)
    redemption_code_max_attempts: int = Field(default=10, ge=1)
    redemption_code_widen_steps: int = Field(default=2, ge=0)
    redemption_default_claim_window_minutes: int = 10
    redemption_history_page_limit: int = 25

    # Deal code pool
    deal_code_default_reserve_minutes: int = 30
    deal_code_max_upload: int = 5000

    # Redemption sweep automation
    redemption_sweep_worker_enabled: bool = False
    redemption_sweep_interval_seconds: int = 300
    redemption_sweep_trigger_label: str = "scheduler"

    # Email / notification settings
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None
    redemption_notifications_enabled: bool = True
    vendor_notification_recipients: list[str] = Field(default_factory=list)

    @field_validator("vendor_notification_recipients", mode="before")
    @classmethod
    def _parse_recipient_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        if not value:
            return "INFO"
        return str(value).strip().upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
