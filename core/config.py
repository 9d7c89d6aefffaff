"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthApp happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Singleton via lru_cache: get_settings() instantiates Settings once at first
call and returns the cached instance on every subsequent call. This is the
FastAPI dependency pattern for config.

BaseSettings reads values from environment variables and an optional .env
file. Field names map to env var names (e.g. database_url -> DATABASE_URL).

Security notes:
  PASSWORD_SCHEME defaults to "sha256" so stored digests stay compatible with
  existing user rows. "bcrypt" switches new digests to a salted KDF; verification
  accepts both formats so a database can be migrated one login at a time.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authapp.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authapp.db'}"

_PASSWORD_SCHEMES = ("sha256", "bcrypt")


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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    password_scheme: str = "sha256"
    # Seeding runs in the lifespan before the first request is served.
    seed_on_startup: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost:4200", "http://127.0.0.1:4200"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("password_scheme")
    @classmethod
    def validate_password_scheme(cls, value: str) -> str:
        scheme = value.strip().lower()
        if scheme not in _PASSWORD_SCHEMES:
            raise ValueError(f"PASSWORD_SCHEME must be one of {_PASSWORD_SCHEMES}, got {value!r}")
        if scheme == "bcrypt":
            logger.info("Password scheme set to bcrypt; legacy sha256 digests remain verifiable")
        return scheme

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown LOG_LEVEL {value!r}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
