import time
import urllib.parse
from http.cookies import SimpleCookie

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from starlette.responses import Response
from starlette.testclient import TestClient

from linkedin.cookies import CookieSessionStore
from linkedin.identity import LINKEDIN_ISSUER
from linkedin.models import Session
from linkedin.oauth2 import TokenResponse
from lipub.app import create_app
from lipub.env import Settings
from lipub.http import build_clients

CLIENT_ID = "li-client"
CLIENT_SECRET = "li-secret"
REDIRECT_URI = "https://lipub.example.com/auth/callback"
SESSION_SECRET = "test-session-secret"
PERSON_URN = "urn:li:person:abc123"
UNSIGNED_KEY = "unverified-id-token-signing-key-for-tests"


def _settings(**overrides) -> Settings:
    values = {
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "redirect_uri": REDIRECT_URI,
        "session_secret": SESSION_SECRET,
        "verify_id_token": False,
        "max_retries": 0,
        "debug": False,
    }
    values.update(overrides)
    return Settings(**values)


def _token_response(*, access_token: str = "li-access-token", id_token: str | None = None):
    return TokenResponse(
        access_token=access_token,
        expires_in=5184000,
        expires_at=time.time() + 5184000,
        id_token=id_token,
        scope="openid profile w_member_social email",
    )


def _unsigned_id_token(**claims) -> str:
    return jwt.encode(claims, UNSIGNED_KEY, algorithm="HS256")


def _rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _jwks(private_key, kid: str = "key-1") -> dict:
    jwk = jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


def _signed_id_token(private_key, *, kid: str = "key-1", **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": LINKEDIN_ISSUER,
        "aud": CLIENT_ID,
        "sub": "abc123",
        "iat": now,
        "exp": now + 3600,
        "nonce": "nonce-1",
        "name": "Ada Lovelace",
    }
    claims.update(overrides)
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": kid})


def _build_app(*, exchange_code_fn=None, **setting_overrides):
    async def _default_exchange(**kwargs):
        del kwargs
        return _token_response(id_token=_unsigned_id_token(sub="abc123", name="Ada Lovelace"))

    settings = _settings(**setting_overrides)
    clients = build_clients(timeout=5.0, max_retries=settings.max_retries)
    app = create_app(
        settings,
        clients=clients,
        exchange_code_fn=exchange_code_fn or _default_exchange,
    )
    return app, TestClient(app)


def _set_cookie_headers(response) -> list[str]:
    headers = response.headers
    if hasattr(headers, "get_list"):
        return headers.get_list("set-cookie")
    return headers.getlist("set-cookie")


def _set_cookies(response) -> dict[str, str]:
    jar = SimpleCookie()
    for header in _set_cookie_headers(response):
        jar.load(header)
    return {name: morsel.value for name, morsel in jar.items()}


def _set_cookie_header(response, name: str) -> str:
    for header in _set_cookie_headers(response):
        if header.startswith(f"{name}="):
            return header
    raise AssertionError(f"no Set-Cookie for {name}")


def _sign_in(test_client, store: CookieSessionStore, session: Session | None = None) -> None:
    response = Response()
    store.write_session(
        response,
        session
        or Session(
            access_token="li-access-token",
            person_urn=PERSON_URN,
            display_name="Ada Lovelace",
        ),
    )
    for name, value in _set_cookies(response).items():
        test_client.cookies.set(name, value)


def _start_sign_in(test_client, return_url: str | None = None) -> str:
    params = {"return": return_url} if return_url is not None else None
    response = test_client.get("/auth/start", params=params, follow_redirects=False)
    query = urllib.parse.parse_qs(urllib.parse.urlparse(response.headers["location"]).query)
    return query["state"][0]
