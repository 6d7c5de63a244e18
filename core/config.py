"""
core/config.py -- Centralized configuration for NovaSanctum via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly. Settings are resolved once at the composition
root (api/main.py lifespan, main.py CLI) and handed to components through
their constructors -- auth/ never calls get_settings() itself.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance afterwards.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. access_token_expire_seconds -> ACCESS_TOKEN_EXPIRE_SECONDS).

  @model_validator(mode="after"): cross-field validation once all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning, production
      mode refuses to start without one.

Token lifetimes have exactly one source of truth each:
  ACCESS_TOKEN_EXPIRE_SECONDS -- access JWT TTL (default 15 minutes)
  SESSION_EXPIRE_SECONDS      -- refresh token / session TTL (default 24 hours)

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("novasanctum.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in tests
    without a real .env file (given DEBUG=true or an explicit secret_key).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///novasanctum.db"
    # Seconds a store call may wait on a locked database or an exhausted pool.
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    session_expire_seconds: int = Field(default=24 * 60 * 60, gt=0)
    # "log": IP change on refresh is audited only. "reject": session revoked.
    refresh_ip_policy: Literal["log", "reject"] = "log"

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    max_login_attempts: int = Field(default=5, ge=1)
    lockout_duration_seconds: int = Field(default=15 * 60, gt=0)
    admin_roles: list[str] = ["admin"]

    # ------------------------------------------------------------------
    # Rate limiting (slowapi / limits storage URI: memory://, redis://...)
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    login_rate_limit: str = "5/15minutes"
    refresh_rate_limit: str = "30/15minutes"

    # ------------------------------------------------------------------
    # Background maintenance
    # ------------------------------------------------------------------

    session_purge_interval_seconds: int = Field(default=60 * 60, gt=0)
    security_stats_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters. JWT signing and
            the refresh-token HMAC both rely on key entropy.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    def policy_summary(self) -> dict:
        """Non-secret policy values, safe to log or return to admins."""
        return {
            "access_token_expire_seconds": self.access_token_expire_seconds,
            "session_expire_seconds": self.session_expire_seconds,
            "max_login_attempts": self.max_login_attempts,
            "lockout_duration_seconds": self.lockout_duration_seconds,
            "bcrypt_rounds": self.bcrypt_rounds,
            "refresh_ip_policy": self.refresh_ip_policy,
        }


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
