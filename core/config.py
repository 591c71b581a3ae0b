"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Shelfguard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, bcrypt_rounds -> BCRYPT_ROUNDS).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Session tokens
       are HS256-signed with it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, catalog/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("shelfguard.config")

_ROOT = Path(__file__).resolve().parent.parent


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = f"sqlite:///{_ROOT / 'auth' / 'shelfguard.db'}"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Fixed-lifetime ticket. There is no renewal: a session issued at T is
    # dead at T + session_lifetime_seconds regardless of activity.
    session_lifetime_seconds: int = 24 * 60 * 60
    session_cookie_name: str = "session"
    secure_cookies: bool = False
    # Client-local persisted session blob used by the CLI.
    session_cache_path: Path = Path.home() / ".shelfguard" / "session.db"

    # ------------------------------------------------------------------
    # Passwords and login throttling
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    login_max_failures: int = 5
    login_cooldown_seconds: int = 15 * 60
    # "memory": single-process dict. "database": shared login_throttle table,
    # required when more than one server process handles logins.
    throttle_backend: str = "memory"
    # Per-IP HTTP guard, independent of the per-email throttle.
    login_rate_limit: str = "10/minute"
    # False: one message for unknown email and wrong password.
    distinct_login_errors: bool = False
    enforce_last_admin_guard: bool = False

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    collaborator_timeout_seconds: float = 5.0
    media_root: Path = _ROOT / "media"
    media_base_url: str = "http://localhost:8000/media"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.throttle_backend not in ("memory", "database"):
            raise ValueError("THROTTLE_BACKEND must be 'memory' or 'database'.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
