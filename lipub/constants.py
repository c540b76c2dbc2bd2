from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("lipub")
APP_VERSION = "0.1.0"

ENV_FILE = Path(__file__).resolve().parent.parent / ".env"

DEFAULT_SCOPES = ["openid", "profile", "w_member_social", "email"]
DEFAULT_API_VERSION = "202502"
RESTLI_PROTOCOL_VERSION = "2.0.0"

DEFAULT_RETURN_URL = "/success.html"
HANDSHAKE_TTL_SECONDS = 5 * 60
SESSION_TTL_SECONDS = 60 * 24 * 60 * 60

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_AFTER_SECONDS = 60
MAX_RETRY_WAIT_SECONDS = 5

DEFAULT_MAX_IMAGE_BYTES = 8 * 1024 * 1024
MAX_CAPTION_LENGTH = 3000
ALLOWED_IMAGE_TYPES = {"image/png", "image/jpeg", "image/gif"}
