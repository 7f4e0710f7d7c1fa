from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from auth.crypto import parse_key
from auth.errors import ConfigError
from auth.urls import canonical_redirect_uri
from .constants import (
    AUTH_LOGGER,
    DEFAULT_PORT,
    DEFAULT_SCOPES,
    DEV_CORS_ORIGINS,
    LOGGER,
    SPOTIFY_API_BASE_URL,
)


@dataclass(frozen=True)
class Settings:
    client_id: str
    encryption_key: bytes
    redirect_uri: str
    environment: str = "development"
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    api_base_url: str = SPOTIFY_API_BASE_URL
    api_timeout: float = 30.0
    cors_origins: frozenset[str] = field(default_factory=lambda: frozenset(DEV_CORS_ORIGINS))
    cookie_domain: str | None = None
    debug: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = ("SPOTIFY_CLIENT_ID", "COOKIE_ENCRYPTION_KEY")
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    parse_key(os.getenv("COOKIE_ENCRYPTION_KEY"))

    environment = os.getenv("ENVIRONMENT", "development").strip() or "development"
    if environment not in {"development", "production"}:
        raise ConfigError("ENVIRONMENT must be 'development' or 'production'.")
    if environment == "production" and not parse_csv_env("ALLOWED_ORIGINS"):
        AUTH_LOGGER.warning("ALLOWED_ORIGINS is empty; cross-origin requests will be refused.")


def load_settings() -> Settings:
    validate_env()

    environment = os.getenv("ENVIRONMENT", "development").strip() or "development"
    port = _get_env_int("PORT", DEFAULT_PORT)
    scopes = tuple(os.getenv("SPOTIFY_SCOPES", " ".join(DEFAULT_SCOPES)).split())

    cors_origins = parse_csv_env("ALLOWED_ORIGINS")
    if not cors_origins and environment != "production":
        cors_origins = set(DEV_CORS_ORIGINS)

    return Settings(
        client_id=os.getenv("SPOTIFY_CLIENT_ID", "").strip(),
        encryption_key=parse_key(os.getenv("COOKIE_ENCRYPTION_KEY")),
        redirect_uri=canonical_redirect_uri(os.getenv("SPOTIFY_REDIRECT_URI"), port=port),
        environment=environment,
        scopes=scopes,
        api_base_url=os.getenv("SPOTIFY_API_BASE_URL", SPOTIFY_API_BASE_URL).rstrip("/"),
        api_timeout=_get_env_float("SPOTIFY_API_TIMEOUT", 30.0),
        cors_origins=frozenset(cors_origins),
        cookie_domain=os.getenv("COOKIE_DOMAIN", "").strip() or None,
        debug=is_truthy(os.getenv("PARTYPLAY_DEBUG", "1")),
    )


def setup_logging(debug_enabled: bool) -> bool:
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        AUTH_LOGGER.setLevel(logging.INFO)
    return debug_enabled
