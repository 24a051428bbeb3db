"""Configuration management for the media asset service.

This module provides centralized configuration loading from environment variables.
Required values are read lazily (at first use) so the app and the test suite can
import every module without a full environment.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required for production)
    MUX_WEBHOOK_SECRET: Signing secret for inbound provider webhooks (required)
    MUX_TOKEN_ID / MUX_TOKEN_SECRET: Encoding provider API credentials
    OPENAI_API_KEY: Generative AI API key
    CATBOX_USERHASH: File storage account hash (needed for deletions)
    STEP_MAX_ATTEMPTS: Attempts per workflow step (default: 3)

Usage:
    from app.config import get_mux_webhook_secret, get_step_max_attempts

    secret = get_mux_webhook_secret()  # Raises ConfigurationError if not set
    attempts = get_step_max_attempts()  # Returns 3 if not set
"""

import os
from functools import lru_cache

import structlog

from app.exceptions import ConfigurationError

log = structlog.get_logger(__name__)

DEFAULT_STEP_MAX_ATTEMPTS = 3
DEFAULT_STEP_BACKOFF_MAX_SECONDS = 10.0
DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300
DEFAULT_OPENAI_TEXT_MODEL = "gpt-4.1"
DEFAULT_OPENAI_IMAGE_MODEL = "dall-e-3"


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"{name} environment variable is required")
    return value


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Returns:
        Database URL with asyncpg driver.

    Raises:
        ConfigurationError: If DATABASE_URL not set.
    """
    url = _require("DATABASE_URL")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_queue_dsn() -> str:
    """Get a plain asyncpg DSN for the job queue (no SQLAlchemy driver suffix)."""
    return get_database_url().replace("postgresql+asyncpg://", "postgresql://", 1)


def get_mux_webhook_secret() -> str:
    """Get the webhook signing secret.

    Not cached so tests can patch the environment per test.

    Raises:
        ConfigurationError: If MUX_WEBHOOK_SECRET not set.
    """
    return _require("MUX_WEBHOOK_SECRET")


def get_mux_credentials() -> tuple[str, str]:
    """Get (token_id, token_secret) for the encoding provider API."""
    return _require("MUX_TOKEN_ID"), _require("MUX_TOKEN_SECRET")


def get_openai_api_key() -> str:
    return _require("OPENAI_API_KEY")


def get_openai_text_model() -> str:
    return os.getenv("OPENAI_TEXT_MODEL", DEFAULT_OPENAI_TEXT_MODEL)


def get_openai_image_model() -> str:
    return os.getenv("OPENAI_IMAGE_MODEL", DEFAULT_OPENAI_IMAGE_MODEL)


def get_catbox_userhash() -> str | None:
    """Get the file storage account hash.

    Returns:
        User hash string, or None if not set.

    Note:
        Uploads work anonymously; deletions require the hash of the account
        that owns the file. Without it, deleting a stored thumbnail raises
        ConfigurationError at the storage client.
    """
    return os.getenv("CATBOX_USERHASH")


def get_cors_origin() -> str:
    return os.getenv("CORS_ORIGIN", "*")


def get_step_max_attempts() -> int:
    """Get the number of attempts per workflow step (first call + retries).

    Environment Variable:
        STEP_MAX_ATTEMPTS: Attempts per step (default: 3)

    Returns:
        Attempts, clamped between 1 and 10.
    """
    try:
        attempts = int(os.getenv("STEP_MAX_ATTEMPTS", str(DEFAULT_STEP_MAX_ATTEMPTS)))
        return max(1, min(10, attempts))
    except ValueError:
        log.warning(
            "invalid_step_max_attempts",
            value=os.getenv("STEP_MAX_ATTEMPTS"),
            using_default=DEFAULT_STEP_MAX_ATTEMPTS,
        )
        return DEFAULT_STEP_MAX_ATTEMPTS


def get_step_backoff_max_seconds() -> float:
    """Get the upper bound of the exponential backoff between step attempts."""
    try:
        return float(
            os.getenv("STEP_BACKOFF_MAX_SECONDS", str(DEFAULT_STEP_BACKOFF_MAX_SECONDS))
        )
    except ValueError:
        log.warning(
            "invalid_step_backoff",
            value=os.getenv("STEP_BACKOFF_MAX_SECONDS"),
            using_default=DEFAULT_STEP_BACKOFF_MAX_SECONDS,
        )
        return DEFAULT_STEP_BACKOFF_MAX_SECONDS


def get_webhook_tolerance_seconds() -> int:
    """Get the maximum accepted age of a signed webhook timestamp."""
    try:
        return int(
            os.getenv("WEBHOOK_TOLERANCE_SECONDS", str(DEFAULT_WEBHOOK_TOLERANCE_SECONDS))
        )
    except ValueError:
        return DEFAULT_WEBHOOK_TOLERANCE_SECONDS
