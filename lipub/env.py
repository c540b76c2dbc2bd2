from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .constants import (
    DEFAULT_API_VERSION,
    DEFAULT_MAX_IMAGE_BYTES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_SCOPES,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_FILE,
    LOGGER,
)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_scopes(raw: str | None) -> list[str]:
    if raw is None or not raw.strip():
        return list(DEFAULT_SCOPES)
    return [scope for scope in raw.replace(",", " ").split() if scope]


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    if not ENV_FILE.exists():
        return
    load_dotenv(ENV_FILE, override=True)


@dataclass
class Settings:
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    api_version: str = DEFAULT_API_VERSION
    production: bool = False
    session_secret: str = ""
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    verify_id_token: bool = True
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    debug: bool = False

    def missing_keys(self) -> list[str]:
        required = {
            "LINKEDIN_CLIENT_ID": self.client_id,
            "LINKEDIN_CLIENT_SECRET": self.client_secret,
            "LINKEDIN_REDIRECT_URI": self.redirect_uri,
        }
        return [key for key, value in required.items() if not value]

    def cookie_secret(self) -> str:
        """Secret used to sign and encrypt cookies.

        Prefers an explicit session secret, then the client secret. Without
        either a random secret is minted, so cookies do not survive a restart.
        """
        if self.session_secret:
            return self.session_secret
        if self.client_secret:
            return self.client_secret
        LOGGER.warning(
            "No LIPUB_SESSION_SECRET or LINKEDIN_CLIENT_SECRET; "
            "using a per-process cookie secret."
        )
        self.session_secret = secrets.token_urlsafe(32)
        return self.session_secret


def load_settings() -> Settings:
    return Settings(
        client_id=os.getenv("LINKEDIN_CLIENT_ID", "").strip(),
        client_secret=os.getenv("LINKEDIN_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv("LINKEDIN_REDIRECT_URI", "").strip(),
        scopes=parse_scopes(os.getenv("LINKEDIN_SCOPES")),
        api_version=os.getenv("LINKEDIN_API_VERSION", "").strip() or DEFAULT_API_VERSION,
        production=os.getenv("LIPUB_ENV", "development").strip().lower() == "production",
        session_secret=os.getenv("LIPUB_SESSION_SECRET", "").strip(),
        timeout=_get_env_float("LINKEDIN_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        max_retries=_get_env_int("LINKEDIN_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        verify_id_token=is_truthy(os.getenv("LINKEDIN_VERIFY_ID_TOKEN", "1")),
        max_image_bytes=_get_env_int("LIPUB_MAX_IMAGE_BYTES", DEFAULT_MAX_IMAGE_BYTES),
        debug=is_truthy(os.getenv("LIPUB_DEBUG", "1")),
    )


def validate_settings(settings: Settings) -> None:
    missing = settings.missing_keys()
    if missing:
        LOGGER.warning(
            "Missing LinkedIn configuration: %s; sign-in will fail until set.",
            ", ".join(missing),
        )
    if settings.production and not settings.session_secret:
        LOGGER.warning("LIPUB_SESSION_SECRET is not set in production.")


def setup_logging(settings: Settings) -> bool:
    if settings.debug:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return settings.debug
