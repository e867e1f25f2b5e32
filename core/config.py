"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Migrant Health Records happen here. No
module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning; production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Access and refresh
  tokens and the offline integrity HMAC all rely on key entropy.

  ADMIN_REGISTRATION_CODES gate POST /api/admin/register. Override them in
  production; the defaults exist so a fresh checkout can create its first admin.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, records/, media/, or offline/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("migranthealth.config")

_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    app_name: str = "migrant-worker-system"
    app_version: str = "0.1.0"
    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 24 * 3600
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    jwt_issuer: str = "migrant-worker-system"
    jwt_audience: str = "healthcare-app"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    admin_registration_codes: list[str] = ["ADMIN_HEALTH_2024", "MIGRANT_ADMIN_SIH", "HEALTHCARE_ADMIN"]
    min_password_length: int = 8

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "20/minute"
    rate_limit_enabled: bool = True
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    auth_db_url: str = f"sqlite:///{_ROOT / 'auth' / 'migranthealth_auth.db'}"
    records_db_url: str = f"sqlite:///{_ROOT / 'records' / 'migranthealth_records.db'}"
    max_upload_bytes: int = 10 * 1024 * 1024

    # ------------------------------------------------------------------
    # Media host (empty cloud name means uploads are disabled)
    # ------------------------------------------------------------------

    media_cloud_name: str = ""
    media_api_key: str = ""
    media_api_secret: str = ""
    media_upload_timeout: int = 30

    # ------------------------------------------------------------------
    # Offline fallback store
    # ------------------------------------------------------------------

    offline_db_path: str = str(_ROOT / "offline" / "migranthealth_offline.db")
    # Base64 AES-256 key. Empty means the store generates and persists its own.
    offline_master_key: str = ""
    api_base_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string. Shared by every store."""
    return datetime.now(timezone.utc).isoformat()
