from __future__ import annotations

import asyncio
import base64
import json

import httpx
import jwt

from linkedin.models import Identity, person_urn
from linkedin.oauth2 import TokenResponse, api_headers
from lipub.constants import DEFAULT_API_VERSION, LOGGER

LINKEDIN_ISSUER = "https://www.linkedin.com/oauth"
LINKEDIN_JWKS_URL = "https://www.linkedin.com/oauth/openid/jwks"
USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
PROFILE_URL = "https://api.linkedin.com/v2/me"
DISPLAY_NAME_PROJECTION = "(localizedFirstName,localizedLastName)"
ID_TOKEN_ALGORITHMS = ["RS256"]

logger = LOGGER.getChild("identity")


class JwksCache:
    """LinkedIn's signing keys, fetched on first use and on unknown key ids."""

    def __init__(self, client: httpx.AsyncClient, *, url: str = LINKEDIN_JWKS_URL) -> None:
        self._client = client
        self._url = url
        self._jwks: jwt.PyJWKSet | None = None
        self._lock = asyncio.Lock()

    async def get_signing_key(self, kid: str | None) -> jwt.PyJWK:
        key = self._find(await self._load(), kid)
        if key is None:
            key = self._find(await self._load(refresh=True), kid)
        if key is None:
            raise jwt.InvalidTokenError(f"No signing key matches kid {kid!r}.")
        return key

    async def _load(self, *, refresh: bool = False) -> jwt.PyJWKSet:
        async with self._lock:
            if self._jwks is None or refresh:
                response = await self._client.get(self._url)
                response.raise_for_status()
                self._jwks = jwt.PyJWKSet.from_dict(response.json())
            return self._jwks

    @staticmethod
    def _find(jwks: jwt.PyJWKSet, kid: str | None) -> jwt.PyJWK | None:
        if kid is None:
            return jwks.keys[0] if len(jwks.keys) == 1 else None
        for key in jwks.keys:
            if key.key_id == kid:
                return key
        return None


def _unverified_payload(id_token: str) -> dict:
    # only the payload segment is read; header and signature are ignored
    parts = id_token.split(".")
    if len(parts) < 2 or not parts[1]:
        raise ValueError("ID token has no payload segment.")
    segment = parts[1]
    payload = json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))
    if not isinstance(payload, dict):
        raise ValueError("ID token payload is not a JSON object.")
    return payload


def _name_from_claims(claims: dict | None) -> str | None:
    if not claims:
        return None
    name = claims.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    parts = [claims.get("given_name"), claims.get("family_name")]
    joined = " ".join(part for part in parts if isinstance(part, str) and part).strip()
    return joined or None


class IdentityResolver:
    """Work out which LinkedIn member a token response belongs to.

    Strategies run in order and the first usable subject wins: the ID token's
    ``sub`` claim, the OpenID userinfo endpoint, then the legacy profile
    endpoint. A strategy that errors is skipped, never fatal.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        client_id: str,
        api_version: str = DEFAULT_API_VERSION,
        verify_id_token: bool = True,
        jwks: JwksCache | None = None,
        leeway_seconds: int = 60,
    ) -> None:
        self._client = client
        self.client_id = client_id
        self.api_version = api_version
        self.verify_id_token = verify_id_token
        self.leeway_seconds = leeway_seconds
        self._jwks = jwks
        if verify_id_token and jwks is None:
            self._jwks = JwksCache(client)

    async def resolve(self, tokens: TokenResponse, *, nonce: str | None = None) -> Identity | None:
        urn, claims = await self._resolve_urn(tokens, nonce)
        if urn is None:
            return None

        display_name = _name_from_claims(claims)
        if display_name is None:
            display_name = await self.resolve_display_name(tokens.access_token)
        return Identity(person_urn=urn, display_name=display_name)

    async def resolve_person_urn(
        self, tokens: TokenResponse, *, nonce: str | None = None
    ) -> str | None:
        urn, _ = await self._resolve_urn(tokens, nonce)
        return urn

    async def _resolve_urn(
        self, tokens: TokenResponse, nonce: str | None
    ) -> tuple[str | None, dict | None]:
        claims = None
        if tokens.id_token:
            claims = await self.id_token_claims(tokens.id_token, nonce=nonce)

        urn = person_urn(claims.get("sub")) if claims else None
        if urn is None:
            urn = await self._urn_from_userinfo(tokens.access_token)
        if urn is None:
            urn = await self._urn_from_profile(tokens.access_token)
        return urn, claims

    async def id_token_claims(self, id_token: str, *, nonce: str | None = None) -> dict | None:
        try:
            if self.verify_id_token:
                return await self._verified_claims(id_token, nonce)
            return _unverified_payload(id_token)
        except (jwt.PyJWTError, httpx.HTTPError, ValueError) as error:
            logger.warning("ID token rejected: %s", error)
            return None

    async def _verified_claims(self, id_token: str, nonce: str | None) -> dict:
        header = jwt.get_unverified_header(id_token)
        signing_key = await self._jwks.get_signing_key(header.get("kid"))
        claims = jwt.decode(
            id_token,
            signing_key.key,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=self.client_id,
            issuer=LINKEDIN_ISSUER,
            leeway=self.leeway_seconds,
            options={"require": ["sub", "exp", "iat"]},
        )
        if nonce is not None and "nonce" in claims and claims["nonce"] != nonce:
            raise jwt.InvalidTokenError("ID token nonce does not match the handshake.")
        return claims

    async def resolve_display_name(self, access_token: str) -> str | None:
        profile = await self._get_json(
            PROFILE_URL,
            access_token,
            params={"projection": DISPLAY_NAME_PROJECTION},
        )
        if not profile or not profile.get("localizedFirstName"):
            return None
        parts = [profile.get("localizedFirstName"), profile.get("localizedLastName")]
        joined = " ".join(part for part in parts if isinstance(part, str) and part).strip()
        return joined or None

    async def _urn_from_userinfo(self, access_token: str) -> str | None:
        userinfo = await self._get_json(USERINFO_URL, access_token)
        return person_urn(userinfo.get("sub")) if userinfo else None

    async def _urn_from_profile(self, access_token: str) -> str | None:
        profile = await self._get_json(PROFILE_URL, access_token)
        return person_urn(profile.get("id")) if profile else None

    async def _get_json(
        self,
        url: str,
        access_token: str,
        *,
        params: dict[str, str] | None = None,
    ) -> dict | None:
        try:
            response = await self._client.get(
                url,
                params=params,
                headers=api_headers(access_token, self.api_version),
            )
        except httpx.HTTPError as error:
            logger.warning("LinkedIn lookup %s failed: %s", url, type(error).__name__)
            return None

        if response.status_code != 200:
            logger.warning("LinkedIn lookup %s returned %s", url, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("LinkedIn lookup %s returned invalid JSON", url)
            return None
        return payload if isinstance(payload, dict) else None
