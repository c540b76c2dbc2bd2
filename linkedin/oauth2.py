from __future__ import annotations

import secrets
import time
import urllib.parse
from dataclasses import dataclass, field

import httpx

from linkedin.errors import TokenExchangeFailed
from lipub.constants import DEFAULT_API_VERSION, LOGGER, RESTLI_PROTOCOL_VERSION

LINKEDIN_AUTHORIZE_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"

logger = LOGGER.getChild("auth")


@dataclass
class TokenResponse:
    access_token: str = field(repr=False)
    expires_in: int
    expires_at: float
    id_token: str | None = field(default=None, repr=False)
    scope: str = ""

    @classmethod
    def from_payload(cls, payload: object) -> "TokenResponse":
        if not isinstance(payload, dict):
            raise TokenExchangeFailed("Token response is not a JSON object.")

        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in", 0)
        id_token = payload.get("id_token")
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise TokenExchangeFailed("Token response missing access_token.")
        if not isinstance(expires_in, int):
            raise TokenExchangeFailed("Token response expires_in must be an integer.")
        if id_token is not None and not isinstance(id_token, str):
            raise TokenExchangeFailed("Token response id_token must be a string.")
        if not isinstance(scope, str):
            scope = ""

        return cls(
            access_token=access_token,
            expires_in=expires_in,
            expires_at=time.time() + expires_in,
            id_token=id_token or None,
            scope=scope,
        )


def generate_state() -> str:
    """Mint a URL-safe token carrying 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    nonce: str,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "scope": " ".join(scopes),
        "nonce": nonce,
    }
    return f"{LINKEDIN_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def api_headers(access_token: str, api_version: str = DEFAULT_API_VERSION) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "X-Restli-Protocol-Version": RESTLI_PROTOCOL_VERSION,
        "LinkedIn-Version": api_version,
    }


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    """Trade an authorization code for tokens.

    Anything but HTTP 200 with a usable body raises TokenExchangeFailed. The
    code is single use, so nothing here is retried.
    """
    own_client = client is None
    http_client = client or httpx.AsyncClient()
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "client_secret": client_secret,
    }

    try:
        response = await http_client.post(LINKEDIN_TOKEN_URL, data=payload)
    except httpx.HTTPError as error:
        raise TokenExchangeFailed(f"Token request error: {type(error).__name__}") from error
    finally:
        if own_client:
            await http_client.aclose()

    if response.status_code != 200:
        logger.warning("Token exchange failed with status %s", response.status_code)
        raise TokenExchangeFailed(f"Token request failed with status {response.status_code}.")

    try:
        body = response.json()
    except ValueError as error:
        raise TokenExchangeFailed("Token response is not valid JSON.") from error
    return TokenResponse.from_payload(body)
