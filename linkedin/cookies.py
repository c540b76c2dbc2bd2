"""Client-held session store.

Every piece of sign-in state lives in cookies on the browser; the service keeps
nothing between requests. Security-relevant values are signed and bound to
their cookie name and issue time, and the access token is encrypted as well, so
a cookie that was edited, swapped or replayed past its lifetime is rejected.
"""

from __future__ import annotations

import base64
import hashlib
import time
import urllib.parse
from collections.abc import Iterable, Mapping

from cryptography.fernet import Fernet, InvalidToken
from starlette.responses import Response

from linkedin import signed_token
from linkedin.errors import InvalidSession
from linkedin.models import HandshakeState, Session, is_valid_person_urn
from linkedin.urls import safe_return_url
from lipub.constants import HANDSHAKE_TTL_SECONDS, LOGGER, SESSION_TTL_SECONDS

STATE_COOKIE = "li_oauth_state"
NONCE_COOKIE = "li_oauth_nonce"
RETURN_COOKIE = "li_return"
ACCESS_TOKEN_COOKIE = "li_access_token"
PERSON_COOKIE = "li_person"
DISPLAY_COOKIE = "li_display"

HANDSHAKE_COOKIES = (STATE_COOKIE, NONCE_COOKIE, RETURN_COOKIE)
SESSION_COOKIES = (ACCESS_TOKEN_COOKIE, PERSON_COOKIE, DISPLAY_COOKIE)

logger = LOGGER.getChild("session")


def derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(f"lipub-cookie:{secret}".encode()).digest()
    return base64.urlsafe_b64encode(digest)


class CookieSessionStore:
    def __init__(
        self,
        secret: str,
        *,
        secure: bool = False,
        handshake_ttl_seconds: int = HANDSHAKE_TTL_SECONDS,
        session_ttl_seconds: int = SESSION_TTL_SECONDS,
        clock=time.time,
    ) -> None:
        self.secure = secure
        self.handshake_ttl_seconds = handshake_ttl_seconds
        self.session_ttl_seconds = session_ttl_seconds
        self._key = signed_token.derive_key(secret)
        self._fernet = Fernet(derive_fernet_key(secret))
        self._clock = clock

    # -- handshake -------------------------------------------------------------

    def write_handshake(self, response: Response, handshake: HandshakeState) -> None:
        values = (
            (STATE_COOKIE, handshake.state),
            (NONCE_COOKIE, handshake.nonce),
            (RETURN_COOKIE, handshake.return_url),
        )
        for name, value in values:
            self._set(response, name, self._sign(name, value), self.handshake_ttl_seconds)

    def read_handshake(self, cookies: Mapping[str, str]) -> HandshakeState | None:
        state = self._read_signed(cookies, STATE_COOKIE, self.handshake_ttl_seconds)
        nonce = self._read_signed(cookies, NONCE_COOKIE, self.handshake_ttl_seconds)
        if not state or not nonce:
            return None
        return HandshakeState(state=state, nonce=nonce, return_url=self.read_return_url(cookies))

    def read_return_url(self, cookies: Mapping[str, str]) -> str:
        return safe_return_url(
            self._read_signed(cookies, RETURN_COOKIE, self.handshake_ttl_seconds)
        )

    # -- session ---------------------------------------------------------------

    def write_session(self, response: Response, session: Session) -> None:
        if not session.is_valid():
            raise InvalidSession("Refusing to write an incomplete session.")
        ttl = self.session_ttl_seconds
        self._set(response, ACCESS_TOKEN_COOKIE, self._encrypt(session.access_token), ttl)
        self._set(response, PERSON_COOKIE, self._sign(PERSON_COOKIE, session.person_urn), ttl)
        self._set(
            response,
            DISPLAY_COOKIE,
            urllib.parse.quote(session.display_name or ""),
            ttl,
            httponly=False,
        )

    def read_session(self, cookies: Mapping[str, str]) -> Session | None:
        """Return the stored session, or None when credentials are absent.

        Raises InvalidSession when credentials are present but fail
        verification or carry a malformed identity.
        """
        raw_token = cookies.get(ACCESS_TOKEN_COOKIE)
        raw_person = cookies.get(PERSON_COOKIE)
        if not raw_token or not raw_person:
            return None

        try:
            access_token = self._decrypt(raw_token)
            person = self._unsign(PERSON_COOKIE, raw_person, self.session_ttl_seconds)
        except RuntimeError as error:
            raise InvalidSession(f"Session cookie rejected: {error}") from error

        if not is_valid_person_urn(person):
            raise InvalidSession("Session identity is malformed.")

        display_name = urllib.parse.unquote(cookies.get(DISPLAY_COOKIE, "")).strip()
        return Session(
            access_token=access_token,
            person_urn=person,
            display_name=display_name or None,
        )

    # -- teardown --------------------------------------------------------------

    def clear(self, response: Response, names: Iterable[str]) -> None:
        for name in names:
            response.delete_cookie(
                name,
                path="/",
                secure=self.secure,
                httponly=name != DISPLAY_COOKIE,
                samesite="lax",
            )

    def clear_handshake(self, response: Response) -> None:
        self.clear(response, HANDSHAKE_COOKIES)

    def clear_session(self, response: Response) -> None:
        self.clear(response, SESSION_COOKIES)

    def clear_all(self, response: Response) -> None:
        self.clear(response, SESSION_COOKIES + HANDSHAKE_COOKIES)

    # -- helpers ---------------------------------------------------------------

    def _set(
        self,
        response: Response,
        name: str,
        value: str,
        max_age: int,
        *,
        httponly: bool = True,
    ) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path="/",
            secure=self.secure,
            httponly=httponly,
            samesite="lax",
        )

    def _sign(self, name: str, value: str) -> str:
        return signed_token.sign(name, value, self._key, issued_at=int(self._clock()))

    def _unsign(self, name: str, raw: str, ttl_seconds: int) -> str:
        return signed_token.unsign(raw, name, self._key, max_age=ttl_seconds, now=self._clock())

    def _read_signed(self, cookies: Mapping[str, str], name: str, ttl_seconds: int) -> str | None:
        raw = cookies.get(name)
        if not raw:
            return None
        try:
            return self._unsign(name, raw, ttl_seconds)
        except signed_token.BadSignature as error:
            logger.warning("Ignoring cookie %s: %s", name, error)
            return None

    def _encrypt(self, value: str) -> str:
        token = self._fernet.encrypt_at_time(value.encode(), int(self._clock()))
        return token.decode().rstrip("=")

    def _decrypt(self, raw: str) -> str:
        padded = raw + "=" * (-len(raw) % 4)
        try:
            data = self._fernet.decrypt_at_time(
                padded,
                ttl=self.session_ttl_seconds,
                current_time=int(self._clock()),
            )
        except (InvalidToken, ValueError) as error:
            raise RuntimeError("Access token cookie failed decryption.") from error
        return data.decode()
