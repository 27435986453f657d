"""
Runtime configuration.

All settings come from environment variables (a .env file in the working
directory is loaded first via python-dotenv). Call load_settings() once at
app construction; nothing reads os.environ after that.

Environment variables
---------------------
NOVU_WEBHOOK_SECRET          Shared HMAC secret for x-novu-signature.
BASIC_AUTH_USER              Edge gate username.
BASIC_AUTH_PASS              Edge gate password.
SUPABASE_URL                 Supabase project URL.
SUPABASE_SERVICE_KEY         Service key (falls back to SUPABASE_KEY).
NOVU_LOG_TABLE               Table holding webhook logs (default: NovuWebhookLogs).
LOG_STORE_BACKEND            "supabase" (default) or "memory".
FEED_POLL_INTERVAL_SECONDS   Viewer poll interval (default: 60).
DISPLAY_TIMEZONE             IANA zone used for viewer timestamps (default: UTC).
LOG_LEVEL                    Root log level (default: INFO).
"""

import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

SUPPORTED_BACKENDS = ("supabase", "memory")


class Settings(BaseModel):
    novu_webhook_secret: str = ""
    basic_auth_user: str = ""
    basic_auth_pass: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    log_table: str = "NovuWebhookLogs"
    log_store_backend: str = "supabase"
    poll_interval_seconds: float = 60.0
    display_timezone: str = "UTC"
    log_level: str = "INFO"

    @field_validator("log_store_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower().strip()
        if value not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unknown log store backend {value!r}. "
                f"Supported backends: {list(SUPPORTED_BACKENDS)}"
            )
        return value

    @field_validator("poll_interval_seconds")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("FEED_POLL_INTERVAL_SECONDS must be positive")
        return value

    @field_validator("display_timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
            raise ValueError(f"Unknown DISPLAY_TIMEZONE {value!r}") from exc
        return value


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment.

    Variables already present in the environment win over the .env file
    (python-dotenv's override=False behaviour).
    """
    load_dotenv(env_file)

    return Settings(
        novu_webhook_secret=_env("NOVU_WEBHOOK_SECRET"),
        basic_auth_user=_env("BASIC_AUTH_USER"),
        basic_auth_pass=_env("BASIC_AUTH_PASS"),
        supabase_url=_env("SUPABASE_URL"),
        supabase_key=_env("SUPABASE_SERVICE_KEY") or _env("SUPABASE_KEY"),
        log_table=_env("NOVU_LOG_TABLE", "NovuWebhookLogs"),
        log_store_backend=_env("LOG_STORE_BACKEND", "supabase"),
        poll_interval_seconds=_env("FEED_POLL_INTERVAL_SECONDS", "60"),
        display_timezone=_env("DISPLAY_TIMEZONE", "UTC"),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )
