"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module calls os.getenv()
directly. The Settings object is built once by the ASGI entry point and then
passed explicitly into create_app() and the AuthGateway constructor, so
request handlers never read configuration ad hoc.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call. Only asgi.py calls it; tests construct Settings(...) directly.

  BaseSettings (pydantic-settings): reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, database_url -> DATABASE_URL).

  @model_validator(mode="after"): cross-field validation once all fields are
      resolved. Dev mode (DEBUG=true) may fall back to a generated secret and
      an in-memory store, each with a warning. Production refuses to start
      without either.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. It keys the session
  token HMAC and the OAuth state cookie.

  An in-memory store loses every session on restart or on a new serverless
  instance. It is only ever a logged, degraded dev mode.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("mauto.config")

# Named shared-memory URI so every pooled connection sees the same schema.
_MEMORY_DB_URL = "sqlite:///file:mauto_dev?mode=memory&cache=shared&uri=true"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.
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
    secret_key: str = ""
    # Empty string means "not configured"; resolved by the validator below.
    database_url: str = ""
    base_url: str = "http://localhost:8080"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 24 * 60 * 60
    session_cookie_name: str = "mauto.sid"
    secure_cookies: bool = False
    # Frontend served from a different site: cookie needs SameSite=None; Secure.
    cross_site: bool = False
    session_purge_interval_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Google OAuth (empty string means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    oauth_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    cors_origins: list[str] = ["http://localhost:8080"]
    allowed_hosts: list[str] = ["*"]

    @property
    def persistent_store(self) -> bool:
        """False when the configured store is an in-memory SQLite database."""
        url = self.database_url
        return not (url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url)

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def cookie_samesite(self) -> str:
        return "none" if self.cross_site else "lax"

    @property
    def cookie_secure(self) -> bool:
        # Browsers drop SameSite=None cookies that are not Secure.
        return self.secure_cookies or self.cross_site

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_and_store(self) -> "Settings":
        """Enforce the SECRET_KEY and DATABASE_URL startup policy.

        Dev mode (DEBUG=true): a missing SECRET_KEY is generated and a missing
            DATABASE_URL falls back to in-memory SQLite. Both log a warning,
            since neither survives a restart.

        Production mode: refuse to start without either. Silently running on
            an in-memory store would log every user out whenever a new
            instance spins up.

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

        if not self.database_url:
            if self.debug:
                self.database_url = _MEMORY_DB_URL
                logger.warning(
                    "DATABASE_URL not set -- using in-memory session and identity store. "
                    "This is a degraded mode: sessions are lost on restart."
                )
            else:
                raise ValueError(
                    "DATABASE_URL is required in production mode. "
                    "Sessions must be persisted in the same database as identities."
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once. Only the ASGI
    entry point should call this; everything downstream receives the object
    as a constructor argument.

    In tests: call get_settings.cache_clear() if you need to re-read the
    environment.
    """
    return Settings()
