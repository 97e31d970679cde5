"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      lifespan in api/main.py hands that one instance to TokenService and
      AuthFlow, so nothing below core/ reads configuration on its own.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  frozen=True: Settings is immutable after validation. Signing secrets and
      token lifetimes cannot be changed by request-handling code.

Security notes:
  Access and refresh tokens are signed with different secrets. A leaked access
  secret cannot mint refresh tokens and vice versa, so the validator rejects
  configurations where both secrets are equal.

  In production mode (DEBUG not set or false), missing secrets are a hard
  startup failure. Secrets shorter than 32 chars are always rejected.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authgate.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_minutes: int = 15
    refresh_token_expire_hours: int = 24

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt cost factor. 12 keeps interactive logins around a quarter second.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    device_cookie_max_age_days: int = 365

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    refresh_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_hours * 3600

    @property
    def device_cookie_max_age_seconds(self) -> int:
        return self.device_cookie_max_age_days * 24 * 3600

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def fill_dev_secrets(cls, data):
        """Generate throwaway signing secrets in dev mode.

        Runs before field validation because the model is frozen -- the
        generated values must be part of the input, not assigned afterwards.
        Sessions will not survive a restart in this mode.
        """
        if not isinstance(data, dict):
            return data
        debug = str(data.get("debug", "")).strip().lower() in ("1", "true", "yes", "on")
        if not debug:
            return data
        for field in ("jwt_access_secret", "jwt_refresh_secret"):
            if not data.get(field):
                data[field] = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated %s. Sessions will not persist across restarts.",
                    field.upper(),
                )
        return data

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy.

        Production mode refuses to start without both secrets. Both modes
        reject short secrets and identical access/refresh secrets.
        """
        for field in ("jwt_access_secret", "jwt_refresh_secret"):
            value = getattr(self, field)
            if not value:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{field.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be different.")
        if self.access_token_expire_minutes <= 0 or self.refresh_token_expire_hours <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and pass it to the component under test.
    """
    return Settings()
