from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BASE_DIR / "studio_ledger.db"
DEFAULT_SQLITE_URL = f"sqlite:///{DEFAULT_SQLITE_PATH}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BASE_DIR / ".env", env_prefix="APP_", case_sensitive=False)

    api_token: str = Field(default="dev-token", description="Bearer token required for staff API calls")
    database_url: str = Field(default=DEFAULT_SQLITE_URL, description="SQLAlchemy database URL")
    # Comma-separated values or '*' for all
    cors_origins: str = Field(default="*")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Studio defaults; the time zone is overridden by the studio_settings row when present
    studio_timezone: str = Field(default="Europe/Madrid")
    default_currency: str = Field(default="MXN")

    # Check-in codes
    booking_qr_ttl_hours: int = Field(default=6, description="Client code validity after session start")
    instructor_qr_ttl_seconds: int = Field(default=10)

    # Fixed plans
    fixed_plan_overfetch_factor: int = Field(default=5)

    # Currencies whose gateway amounts are not expressed in cents
    zero_decimal_currencies: str = Field(default="JPY,KRW")

    @property
    def cors_origins_list(self) -> List[str]:
        s = (self.cors_origins or "").strip()
        if not s or s == "*":
            return ["*"]
        return [part.strip() for part in s.split(",") if part.strip()]

    @property
    def zero_decimal_currency_set(self) -> set[str]:
        return {part.strip().upper() for part in self.zero_decimal_currencies.split(",") if part.strip()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
