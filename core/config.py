"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LabLIMS happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  Explicit injection: the settings object is read once in the application
      lifespan and its values are handed to TokenCodec and SessionRegistry as
      constructor arguments. No auth module reads configuration on import.

Security notes:
  JWT_SECRET has a compiled-in fallback so a fresh checkout boots. The value
  is public (it is in this file), so any deployment that keeps it can have
  tokens forged. A warning is logged at startup whenever the fallback is used.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or standards/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lablims.config")

INSECURE_DEFAULT_SECRET = "lab-lims-secret-change-in-production-2026"

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'lablims.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # swaps in the insecure literal and warns.
    jwt_secret: str = ""
    token_ttl_seconds: int = 8 * 3600
    # False keeps bearer tokens valid until they expire even after logout.
    # True requires a live, unexpired session row on every authenticated request.
    require_live_session: bool = False

    # First-run ADMIN account, created only when the users table is empty.
    seed_admin_email: str = "admin@lab.com"
    seed_admin_password: str = "admin123"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def apply_secret_fallback(self) -> "Settings":
        """Fall back to the compiled-in signing secret when none is configured."""
        if not self.jwt_secret:
            self.jwt_secret = INSECURE_DEFAULT_SECRET
            logger.warning("JWT_SECRET is not set -- using the insecure built-in default. Override it in production.")
        if self.token_ttl_seconds <= 0:
            raise ValueError("TOKEN_TTL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
