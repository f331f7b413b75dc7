"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    api_url: str
    opencage_api_key: str = ""
    request_timeout: float = 10.0
    max_workers: int = 1
    geocode_retries: int = 2
    geocode_min_confidence: int = 0
    report_checkpoint_every: int = 0


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    api_url = os.getenv("OFDB_API_URL", "")
    opencage_api_key = os.getenv("OPENCAGE_API_KEY", "")
    try:
        request_timeout = float(os.getenv("OFDB_REQUEST_TIMEOUT", "10"))
    except ValueError as exc:
        raise ConfigError("OFDB_REQUEST_TIMEOUT must be a number of seconds") from exc

    if not api_url:
        logger.warning("OFDB_API_URL is not set; catalog requests need --api-url.")
    if not opencage_api_key:
        logger.warning("OPENCAGE_API_KEY is not configured; rows without coordinates cannot be geocoded.")

    return Settings(
        api_url=api_url,
        opencage_api_key=opencage_api_key,
        request_timeout=request_timeout,
        max_workers=_int_env("OFDB_MAX_WORKERS", 1, minimum=1),
        geocode_retries=_int_env("GEOCODE_RETRIES", 2),
        geocode_min_confidence=_int_env("GEOCODE_MIN_CONFIDENCE", 0),
        report_checkpoint_every=_int_env("REPORT_CHECKPOINT_EVERY", 0),
    )
