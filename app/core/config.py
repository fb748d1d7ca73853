from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from pydantic import EmailStr, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# ================================
# HELPERS
# ================================
def _mask_secret(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    s = str(val)
    if not s:
        return s
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def _project_root() -> Path:
    here = Path(__file__).resolve()
    return here.parent.parent.parent


def _parse_list_like(v):
    if isinstance(v, str):
        v = v.strip()
        if v.startswith("[") and v.endswith("]"):
            try:
                parsed = json.loads(v)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(i).strip() for i in parsed if str(i).strip()]
        return [i.strip() for i in v.split(",") if i.strip()]
    return v


def _is_secret_key_name(key: str) -> bool:
    lk = key.lower()
    if any(s in lk for s in ("secret", "password", "token")):
        return True
    if "key" in lk and "public" not in lk:
        return True
    return False


# ================================
# APPLICATION SETTINGS (Pydantic v2)
# ================================
class Settings(BaseSettings):
    """
    OrderDesk configuration layer.
    - SQLite fallback in development, any SQLAlchemy URL otherwise.
    - Secrets masked in dumps.
    - Outbound HTTP uses a single request-level timeout.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- base
    PROJECT_NAME: str = Field(default="OrderDesk", description="Project name")
    VERSION: str = Field(default="0.1.0", description="Application version")
    DEBUG: bool = Field(default=False, description="Debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment")
    API_V1_STR: str = Field(default="/api/v1", description="API v1 prefix")
    BACKEND_CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost", "http://localhost:3000"],
        description="Backend CORS origins",
    )

    # ---- database
    DATABASE_URL: str = Field(default="sqlite:///./orderdesk.db", description="Database URL")
    SQLALCHEMY_ECHO: bool = Field(default=False, description="Echo SQL statements")

    # ---- logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(default=False, description="Force JSON log rendering")

    # ---- SMTP
    SMTP_HOST: str = Field(default="", description="SMTP host")
    SMTP_PORT: int = Field(default=587, description="SMTP port")
    SMTP_USER: str = Field(default="", description="SMTP user")
    SMTP_PASSWORD: str = Field(default="", description="SMTP password")
    SMTP_USE_TLS: bool = Field(default=True, description="Use STARTTLS")
    EMAILS_FROM_EMAIL: Optional[EmailStr] = Field(default=None, description="Sender email")
    EMAILS_FROM_NAME: str = Field(default="OrderDesk", description="Sender display name")

    # ---- SMS
    SMS_PROVIDER: str = Field(default="twilio", description="SMS backend: twilio|mobizon|vonage")
    SMS_DEFAULT_COUNTRY_CODE: str = Field(default="1", description="Country code for 10-digit numbers")
    TWILIO_ACCOUNT_SID: Optional[str] = Field(default=None, description="Twilio account SID")
    TWILIO_AUTH_TOKEN: Optional[str] = Field(default=None, description="Twilio auth token")
    TWILIO_FROM_NUMBER: Optional[str] = Field(default=None, description="Twilio sender number")
    TWILIO_API_URL: str = Field(default="https://api.twilio.com", description="Twilio API URL")
    MOBIZON_API_KEY: Optional[str] = Field(default=None, description="Mobizon API key")
    MOBIZON_API_URL: str = Field(default="https://api.mobizon.kz", description="Mobizon API URL")
    MOBIZON_SENDER: Optional[str] = Field(default=None, description="Mobizon alpha name")
    VONAGE_API_KEY: Optional[str] = Field(default=None, description="Vonage API key")
    VONAGE_API_SECRET: Optional[str] = Field(default=None, description="Vonage API secret")
    VONAGE_FROM: Optional[str] = Field(default=None, description="Vonage sender")
    VONAGE_API_URL: str = Field(default="https://rest.nexmo.com", description="Vonage API URL")

    # ---- outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = Field(default=15.0, description="Request-level timeout for outbound calls")

    # ---- media storage
    CLOUDINARY_CLOUD_NAME: Optional[str] = Field(default=None, description="Cloudinary cloud name")
    CLOUDINARY_API_KEY: Optional[str] = Field(default=None, description="Cloudinary API key")
    CLOUDINARY_API_SECRET: Optional[str] = Field(default=None, description="Cloudinary API secret")

    # ---- business
    RESTORE_ALLOWED_ACTOR_IDS: Annotated[List[str], NoDecode] = Field(default=[], description="Actors allowed to restore deleted products")
    INVOICE_DUE_DAYS: int = Field(default=30, description="Days until an invoice is due")
    COMPANY_NAME: str = Field(default="OrderDesk", description="Company name printed on invoices")

    # --------- validators ---------
    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    def _bcors(cls, v):
        return _parse_list_like(v)

    @field_validator("RESTORE_ALLOWED_ACTOR_IDS", mode="before")
    def _restore_ids(cls, v):
        return _parse_list_like(v)

    @field_validator("EMAILS_FROM_EMAIL", mode="before")
    def empty_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("SMS_PROVIDER")
    def check_sms_provider(cls, v):
        v = (v or "").strip().lower()
        if v not in {"twilio", "mobizon", "vonage"}:
            raise ValueError(f"Unsupported SMS provider: {v}")
        return v

    # --------- properties ---------
    @property
    def base_dir(self) -> Path:
        return _project_root()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.EMAILS_FROM_EMAIL)

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.CLOUDINARY_CLOUD_NAME and self.CLOUDINARY_API_KEY and self.CLOUDINARY_API_SECRET)

    def dump_settings_safe(self) -> Dict[str, Any]:
        data = self.model_dump()
        return {k: (_mask_secret(v) if _is_secret_key_name(k) and isinstance(v, str) else v) for k, v in data.items()}


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

__all__ = ["Settings", "get_settings", "settings"]
