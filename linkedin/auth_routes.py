from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from linkedin import oauth2
from linkedin.cookies import CookieSessionStore
from linkedin.errors import (
    ConfigurationError,
    IdentityExtractionFailed,
    InternalError,
    InvalidSession,
    InvalidState,
    NoCode,
    OAuthDenied,
    PipelineError,
)
from linkedin.identity import IdentityResolver
from linkedin.models import HandshakeState, Session
from linkedin.urls import append_query_params, safe_return_url
from lipub.constants import DEFAULT_SCOPES, LOGGER

NO_STORE = {"Cache-Control": "no-store"}
AUTH_ERROR_PARAM = "auth_error"

logger = LOGGER.getChild("auth")


def json_error(error: PipelineError, *, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"error": error.message}, status_code=error.status_code, headers=headers)


class AuthRoutes:
    """Sign-in with LinkedIn: start, callback, status and logout."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        store: CookieSessionStore,
        resolver: IdentityResolver,
        scopes: list[str] | None = None,
        http_client=None,
        exchange_code_fn=oauth2.exchange_code,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.store = store
        self.resolver = resolver
        self._http_client = http_client
        self._exchange_code_fn = exchange_code_fn

    def routes(self) -> list[Route]:
        return [
            Route("/auth/start", self._handle_start, methods=["GET"]),
            Route("/auth/callback", self._handle_callback, methods=["GET"]),
            Route("/auth/status", self._handle_status, methods=["GET"]),
            Route("/auth/logout", self._handle_logout, methods=["GET"]),
        ]

    # -- handlers --------------------------------------------------------------

    async def _handle_start(self, request: Request) -> Response:
        try:
            if not self.client_id or not self.redirect_uri:
                raise ConfigurationError("LINKEDIN_CLIENT_ID or LINKEDIN_REDIRECT_URI is not set.")

            handshake = HandshakeState(
                state=oauth2.generate_state(),
                nonce=oauth2.generate_state(),
                return_url=safe_return_url(request.query_params.get("return")),
            )
            authorize_url = oauth2.build_authorization_url(
                client_id=self.client_id,
                redirect_uri=self.redirect_uri,
                scopes=self.scopes,
                state=handshake.state,
                nonce=handshake.nonce,
            )
        except PipelineError as error:
            logger.error("Cannot start sign-in: %s", error)
            return json_error(error)
        except Exception:
            logger.exception("Unexpected error starting sign-in")
            return json_error(InternalError())

        response = RedirectResponse(url=authorize_url, status_code=302, headers=NO_STORE)
        self.store.write_handshake(response, handshake)
        return response

    async def _handle_callback(self, request: Request) -> Response:
        return_url = self.store.read_return_url(request.cookies)
        try:
            session = await self._complete_sign_in(request)
        except PipelineError as error:
            logger.warning("Sign-in callback failed (%s): %s", error.code, error)
            return self._redirect_with_error(return_url, error.code)
        except Exception:
            logger.exception("Unexpected error in sign-in callback")
            return self._redirect_with_error(return_url, InternalError.code)

        response = RedirectResponse(url=return_url, status_code=302, headers=NO_STORE)
        self.store.write_session(response, session)
        self.store.clear_handshake(response)
        logger.info("Signed in %s", session.person_urn)
        return response

    async def _handle_status(self, request: Request) -> Response:
        try:
            session = self.store.read_session(request.cookies)
        except InvalidSession as error:
            logger.info("Status check saw an invalid session: %s", error)
            session = None

        signed_in = session is not None and session.is_valid()
        return JSONResponse(
            {
                "signedIn": signed_in,
                "displayName": session.display_name if signed_in else None,
            },
            headers=NO_STORE,
        )

    async def _handle_logout(self, request: Request) -> Response:
        return_url = safe_return_url(request.query_params.get("return"))
        response = RedirectResponse(url=return_url, status_code=302, headers=NO_STORE)
        self.store.clear_all(response)
        return response

    # -- callback steps --------------------------------------------------------

    async def _complete_sign_in(self, request: Request) -> Session:
        params = request.query_params
        error = params.get("error")
        if error:
            raise OAuthDenied(f"LinkedIn returned error={error!r}.")

        state = params.get("state")
        handshake = self.store.read_handshake(request.cookies)
        if (
            not state
            or handshake is None
            or not hmac.compare_digest(state.encode(), handshake.state.encode())
        ):
            raise InvalidState("Callback state does not match the issued handshake.")

        code = params.get("code")
        if not code:
            raise NoCode("Callback carried no authorization code.")

        if not self.client_id or not self.client_secret or not self.redirect_uri:
            raise ConfigurationError("LinkedIn client credentials are not configured.")

        tokens = await self._exchange_code_fn(
            client_id=self.client_id,
            client_secret=self.client_secret,
            code=code,
            redirect_uri=self.redirect_uri,
            client=self._http_client,
        )

        identity = await self.resolver.resolve(tokens, nonce=handshake.nonce)
        if identity is None:
            raise IdentityExtractionFailed("No strategy produced a LinkedIn member id.")

        return Session(
            access_token=tokens.access_token,
            person_urn=identity.person_urn,
            display_name=identity.display_name,
        )

    def _redirect_with_error(self, return_url: str, code: str) -> Response:
        url = append_query_params(return_url, {AUTH_ERROR_PARAM: code})
        response = RedirectResponse(url=url, status_code=302, headers=NO_STORE)
        self.store.clear_handshake(response)
        return response
