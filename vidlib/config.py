"""
Configuration module for the vidlib backend.
Centralizes all environment variables and settings.

Render Compatibility:
- Handles Render's DATABASE_URL format (postgres:// -> postgresql://)
- Uses Render's PORT env var

Usage:
    from vidlib.config import config

    if config.IS_DEV:
        print("Running in development mode")

    limit = config.ANONYMOUS_VIDEO_LIMIT
"""

import logging
import os
from typing import Optional, List
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file (safe - won't override existing env vars)
load_dotenv()

logger = logging.getLogger("vidlib.config")


def _get_env(key: str, default: str = "") -> str:
    """Safely get and strip an environment variable."""
    return os.getenv(key, default).strip()


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get an environment variable as boolean."""
    val = _get_env(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    """Get an environment variable as integer."""
    try:
        return int(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_list(key: str, default: List[str] = None) -> List[str]:
    """Get a comma-separated environment variable as list."""
    val = _get_env(key, "")
    if not val:
        return default or []
    return [item.strip() for item in val.split(",") if item.strip()]


def _fix_render_database_url(url: str) -> str:
    """
    Fix Render's DATABASE_URL format.
    Render uses 'postgres://' but psycopg3 requires 'postgresql://'.
    """
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass
class Config:
    """
    Application configuration with all settings.
    Loaded from environment variables with sensible defaults.
    """

    # ─────────────────────────────────────────────────────────────
    # Environment
    # ─────────────────────────────────────────────────────────────
    FLASK_ENV: str = field(default_factory=lambda: _get_env("FLASK_ENV", "production").lower())

    @property
    def IS_DEV(self) -> bool:
        """True if running in development mode."""
        if self.FLASK_ENV in ("development", "dev", "local", "test"):
            return True
        if _get_env("FLASK_ENV"):
            return False
        # FLASK_ENV not set and not on Render: assume local development
        return not self.IS_RENDER

    @property
    def IS_PROD(self) -> bool:
        """True if running in production mode."""
        return not self.IS_DEV

    @property
    def IS_RENDER(self) -> bool:
        """True if running on Render.com."""
        return bool(_get_env("RENDER"))

    SESSION_DEBUG: bool = field(default_factory=lambda: _get_env_bool("SESSION_DEBUG", False))

    # ─────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────
    PORT: int = field(default_factory=lambda: _get_env_int("PORT", 5001))
    HOST: str = field(default_factory=lambda: _get_env("HOST", "0.0.0.0"))

    # ─────────────────────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────────────────────
    _DATABASE_URL_RAW: str = field(default_factory=lambda: _get_env("DATABASE_URL"))

    @property
    def DATABASE_URL(self) -> str:
        """Database connection URL (fixed for psycopg3 compatibility)."""
        return _fix_render_database_url(self._DATABASE_URL_RAW)

    @property
    def HAS_DATABASE(self) -> bool:
        """True if database URL is configured."""
        return bool(self._DATABASE_URL_RAW)

    APP_SCHEMA: str = field(default_factory=lambda: _get_env("APP_SCHEMA", "vidlib"))
    DB_CONNECT_TIMEOUT: int = field(default_factory=lambda: _get_env_int("DB_CONNECT_TIMEOUT", 5))

    # ─────────────────────────────────────────────────────────────
    # Anonymous Sessions & Quota
    # ─────────────────────────────────────────────────────────────
    ANONYMOUS_VIDEO_LIMIT: int = field(default_factory=lambda: _get_env_int("ANONYMOUS_VIDEO_LIMIT", 3))
    ANONYMOUS_SESSION_PREFIX: str = field(default_factory=lambda: _get_env("ANONYMOUS_SESSION_PREFIX") or "anon_")

    # Sessions idle longer than this are reclaimed by the sweeper
    ANONYMOUS_INACTIVE_DAYS: int = field(default_factory=lambda: _get_env_int("ANONYMOUS_INACTIVE_DAYS", 30))
    ANON_COOKIE_MAX_AGE_DAYS: int = field(default_factory=lambda: _get_env_int("ANON_COOKIE_MAX_AGE_DAYS", 90))

    @property
    def ANON_COOKIE_MAX_AGE_SECONDS(self) -> int:
        return self.ANON_COOKIE_MAX_AGE_DAYS * 24 * 60 * 60

    # ─────────────────────────────────────────────────────────────
    # Registered Sessions
    # ─────────────────────────────────────────────────────────────
    USER_SESSION_TTL_DAYS: int = field(default_factory=lambda: _get_env_int("USER_SESSION_TTL_DAYS", 14))

    @property
    def USER_SESSION_TTL_SECONDS(self) -> int:
        """Registered session TTL in seconds (DB expiry and cookie max-age)."""
        return self.USER_SESSION_TTL_DAYS * 24 * 60 * 60

    # ─────────────────────────────────────────────────────────────
    # Credential Carriers (cookies + headers)
    # ─────────────────────────────────────────────────────────────
    USER_SESSION_COOKIE_NAME: str = "vl_session"
    ANON_SESSION_COOKIE_NAME: str = "vl_anon"
    USER_SESSION_HEADER: str = "X-Session-Token"
    ANON_SESSION_HEADER: str = "X-Anonymous-Session"

    _SESSION_COOKIE_DOMAIN_RAW: str = field(default_factory=lambda: _get_env("SESSION_COOKIE_DOMAIN"))

    @property
    def SESSION_COOKIE_DOMAIN(self) -> Optional[str]:
        """
        Cookie domain for cross-subdomain sharing.
        Returns None unless explicitly configured (host-only cookie).
        """
        return self._SESSION_COOKIE_DOMAIN_RAW or None

    @property
    def SESSION_COOKIE_SECURE(self) -> bool:
        """Secure cookie: True in production (HTTPS), False in dev (HTTP)."""
        return self.IS_PROD

    @property
    def SESSION_COOKIE_SAMESITE(self) -> str:
        # SameSite=None requires Secure=True, so only use it in production
        return "None" if self.IS_PROD else "Lax"

    # ─────────────────────────────────────────────────────────────
    # Session Cleanup
    # ─────────────────────────────────────────────────────────────
    SESSION_CLEANUP_ENABLED: bool = field(default_factory=lambda: _get_env_bool("SESSION_CLEANUP_ENABLED", True))
    SESSION_CLEANUP_INTERVAL_HOURS: int = field(default_factory=lambda: _get_env_int("SESSION_CLEANUP_INTERVAL_HOURS", 24))
    SESSION_CLEANUP_BATCH_SIZE: int = field(default_factory=lambda: _get_env_int("SESSION_CLEANUP_BATCH_SIZE", 500))

    @property
    def SESSION_CLEANUP_INTERVAL_SECONDS(self) -> int:
        return self.SESSION_CLEANUP_INTERVAL_HOURS * 60 * 60

    # ─────────────────────────────────────────────────────────────
    # Admin
    # ─────────────────────────────────────────────────────────────
    ADMIN_TOKEN: str = field(default_factory=lambda: _get_env("ADMIN_TOKEN"))

    @property
    def ADMIN_AUTH_CONFIGURED(self) -> bool:
        """True if admin authentication is configured."""
        return bool(self.ADMIN_TOKEN)

    # ─────────────────────────────────────────────────────────────
    # CORS
    # ─────────────────────────────────────────────────────────────
    _ALLOWED_ORIGINS_RAW: str = field(default_factory=lambda: _get_env("ALLOWED_ORIGINS"))

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """
        List of allowed CORS origins.
        Parses comma-separated URLs and drops anything that is not http(s).
        """
        raw = self._ALLOWED_ORIGINS_RAW

        if not raw:
            if self.IS_DEV:
                return [
                    "http://localhost:3000",
                    "http://localhost:5000",
                    "http://localhost:5173",
                    "http://127.0.0.1:3000",
                    "http://127.0.0.1:5173",
                ]
            return []

        if raw == "*":
            return ["*"]

        return [
            origin
            for origin in _get_env_list("ALLOWED_ORIGINS")
            if origin.startswith("http://") or origin.startswith("https://")
        ]

    @property
    def ALLOW_ALL_ORIGINS(self) -> bool:
        """True if wildcard CORS is enabled."""
        return self._ALLOWED_ORIGINS_RAW == "*"

    # ─────────────────────────────────────────────────────────────
    # Logging & Debug
    # ─────────────────────────────────────────────────────────────
    def log_summary(self) -> None:
        """Log configuration summary at startup."""
        logger.info("[CONFIG] Environment: %s (IS_DEV=%s, render=%s)", self.FLASK_ENV, self.IS_DEV, self.IS_RENDER)
        logger.info("[CONFIG] Database configured: %s, schema=%s", self.HAS_DATABASE, self.APP_SCHEMA)
        logger.info(
            "[CONFIG] Anonymous quota: %s videos, inactive after %s days",
            self.ANONYMOUS_VIDEO_LIMIT,
            self.ANONYMOUS_INACTIVE_DAYS,
        )
        logger.info(
            "[CONFIG] Session cleanup: enabled=%s, every %sh",
            self.SESSION_CLEANUP_ENABLED,
            self.SESSION_CLEANUP_INTERVAL_HOURS,
        )
        logger.info("[CONFIG] Admin auth configured: %s", self.ADMIN_AUTH_CONFIGURED)


config = Config()
