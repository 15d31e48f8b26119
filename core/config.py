"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly.

Design patterns used:
  Explicit injection: Settings is built once by the application factory
      (api.main.create_app) and handed to TokenCodec, AuthService and the
      web layer. Nothing below core/ reads a module-level settings object, so
      tests construct Settings(...) directly and a secret rotation only needs
      a new Settings instance, not a process restart.

  get_settings(): lru_cache singleton used only by the production entry
      point (asgi.py). Call get_settings.cache_clear() in tests that need to
      re-read the environment.

  @model_validator(mode="after"): Cross-field validation after all fields
      are resolved. Implements the JWT_SECRET policy: dev mode generates a
      key with a loud warning, production mode refuses to start without one.

Security notes:
  JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing
  relies on key entropy; 32 chars is the 256-bit floor.

Layer rule: core/ is the kernel. This module may not import from api/, web/
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tenantauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tenantauth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.

    Field names map to upper-cased env var names, e.g. jwt_secret reads
    JWT_SECRET and validate_sessions reads VALIDATE_SESSIONS.
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
    # Empty string is the sentinel for "not configured". The validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 30 * 60
    refresh_token_expire_days: int = 7
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Session registry
    # ------------------------------------------------------------------

    validate_sessions: bool = False
    # "log" keeps a fingerprint mismatch non-blocking (a browser or OS update
    # changes the fingerprint of a legitimate client). "block" rejects it.
    fingerprint_policy: Literal["log", "block"] = "log"
    fingerprint_header: str = "X-Device-Fingerprint"

    # ------------------------------------------------------------------
    # Web / transport
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    login_page: str = "/login"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Enforce the JWT_SECRET policy.

        Dev mode (DEBUG=true): auto-generate a random 256-bit key and warn.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start without
            JWT_SECRET.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: JWT_SECRET is not set -- using an auto-generated signing key. "
                    "Issued tokens will not survive a restart. Never run like this in production."
                )
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process Settings, read from the environment on first call.

    Only the application entry point should call this. Everything else gets
    its Settings injected.
    """
    return Settings()
