"""Application settings.

All configuration comes from environment variables (or a ``.env`` file) and
is validated once, when the app is created. Malformed values stop the process
before any route is reachable; absent credentials merely disable the feature
that needs them, and the affected routes answer with a ``Missing ...`` error.
"""

import json
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .helpers import load_zone
from .errors import ConfigError

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"


class Settings(BaseSettings):
    """Process-wide configuration, read-only after startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Payment gateway
    razorpay_key_id: Optional[str] = Field(default=None, alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: Optional[str] = Field(
        default=None, alias="RAZORPAY_KEY_SECRET"
    )
    razorpay_webhook_secret: Optional[str] = Field(
        default=None, alias="RAZORPAY_WEBHOOK_SECRET"
    )
    razorpay_api_url: str = Field(
        default="https://api.razorpay.com/v1", alias="RAZORPAY_API_URL"
    )
    payment_backend: Literal["razorpay", "mock"] = Field(
        default="razorpay", alias="PAYMENT_BACKEND"
    )
    receipt_prefix: str = Field(default="rento", alias="RECEIPT_PREFIX")
    order_source_note: str = Field(default="rento-web", alias="ORDER_SOURCE_NOTE")
    default_currency: str = Field(default="INR", alias="DEFAULT_CURRENCY")
    mock_webhook_url: Optional[str] = Field(default=None, alias="MOCK_WEBHOOK_URL")

    # Counter store (Google Sheets)
    google_service_account_json: Optional[str] = Field(
        default=None, alias="GOOGLE_SERVICE_ACCOUNT_JSON"
    )
    google_sheet_id: Optional[str] = Field(default=None, alias="GOOGLE_SHEET_ID")
    google_sheet_tab: str = Field(default="Sheet1", alias="GOOGLE_SHEET_TAB")
    sheets_api_url: str = Field(
        default="https://sheets.googleapis.com/v4", alias="SHEETS_API_URL"
    )
    log_timezone: str = Field(default="Asia/Kolkata", alias="LOG_TIMEZONE")
    counter_lock_backend: Literal["local", "redis"] = Field(
        default="local", alias="COUNTER_LOCK_BACKEND"
    )
    counter_lock_ttl_seconds: float = Field(
        default=10.0, alias="COUNTER_LOCK_TTL_SECONDS"
    )
    redis_url: str = Field(default="redis://127.0.0.1:6379", alias="REDIS_URL")

    # HTTP server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")
    max_body_bytes: int = Field(default=256 * 1024, alias="MAX_BODY_BYTES")
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    timings_url: Optional[str] = Field(default=None, alias="TIMINGS_URL")

    @field_validator(
        "razorpay_key_id", "razorpay_key_secret", "razorpay_webhook_secret",
        "google_service_account_json", "google_sheet_id", "mock_webhook_url",
        "timings_url",
        mode="before",
    )
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("payment_backend", "counter_lock_backend", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_timezone")
    @classmethod
    def _valid_zone(cls, value: str) -> str:
        try:
            load_zone(value)
        except ConfigError as exc:
            raise ValueError(exc.message)
        return value

    @field_validator("google_service_account_json")
    @classmethod
    def _valid_service_account(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON: {exc}")
        if not isinstance(parsed, dict):
            raise ValueError("GOOGLE_SERVICE_ACCOUNT_JSON must be a JSON object")
        for key in ("client_email", "private_key"):
            if not parsed.get(key):
                raise ValueError(f"GOOGLE_SERVICE_ACCOUNT_JSON lacks {key}")
        return value

    @field_validator("max_body_bytes", "port")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    # ---
    # derived views
    # ---
    def service_account_info(self) -> Dict[str, Any]:
        if self.google_service_account_json is None:
            raise ConfigError("Missing GOOGLE_SERVICE_ACCOUNT_JSON env var")
        info = json.loads(self.google_service_account_json)
        # keys pasted into env vars usually carry literal backslash-n
        if isinstance(info.get("private_key"), str):
            info["private_key"] = info["private_key"].replace("\\n", "\n")
        return info

    @property
    def payments_enabled(self) -> bool:
        if self.payment_backend == "mock":
            return True
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def counter_enabled(self) -> bool:
        return bool(self.google_sheet_id and self.google_service_account_json)

    @property
    def cors_origins(self) -> List[str]:
        return [
            o.strip() for o in self.cors_allow_origins.split(",") if o.strip()
        ]

    def missing_payment_vars(self) -> List[str]:
        if self.payment_backend == "mock":
            return []
        missing = []
        if not self.razorpay_key_id:
            missing.append("RAZORPAY_KEY_ID")
        if not self.razorpay_key_secret:
            missing.append("RAZORPAY_KEY_SECRET")
        return missing

    def missing_counter_vars(self) -> List[str]:
        missing = []
        if not self.google_sheet_id:
            missing.append("GOOGLE_SHEET_ID")
        if not self.google_service_account_json:
            missing.append("GOOGLE_SERVICE_ACCOUNT_JSON")
        return missing

    def describe(self) -> Iterator[Tuple[str, str]]:
        if self.payments_enabled:
            yield "payments", f"enabled ({self.payment_backend})"
        else:
            missing = ", ".join(self.missing_payment_vars())
            yield "payments", f"disabled (missing {missing})"
        if self.razorpay_webhook_secret:
            yield "webhooks", "enabled"
        else:
            yield "webhooks", "disabled (missing RAZORPAY_WEBHOOK_SECRET)"
        if self.counter_enabled:
            yield "call counter", (
                f"enabled (tab {self.google_sheet_tab!r}, "
                f"zone {self.log_timezone}, lock {self.counter_lock_backend})"
            )
        else:
            missing = ", ".join(self.missing_counter_vars())
            yield "call counter", f"disabled (missing {missing})"


def load_settings(**overrides: Any) -> Settings:
    return Settings(**overrides)
