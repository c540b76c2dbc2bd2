from __future__ import annotations

import contextlib

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from linkedin.auth_routes import AuthRoutes, json_error
from linkedin.cookies import CookieSessionStore
from linkedin.errors import MethodNotAllowed
from linkedin.identity import IdentityResolver
from linkedin.publish_routes import PublishRoutes
from linkedin.publisher import MediaPublisher

from .constants import APP_VERSION, LOGGER
from .env import Settings, load_env, load_settings, setup_logging, validate_settings
from .http import LinkedInClients, build_clients


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse({"status": "ok", "version": APP_VERSION})


async def http_error_handler(request: Request, exc: HTTPException) -> Response:
    del request
    if exc.status_code == 405:
        return json_error(MethodNotAllowed(), headers=exc.headers)
    if exc.status_code == 404:
        body = {"error": "Not found"}
    else:
        body = {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


def create_app(
    settings: Settings | None = None,
    *,
    clients: LinkedInClients | None = None,
    exchange_code_fn=None,
) -> Starlette:
    if settings is None:
        load_env()
        settings = load_settings()
    debug_enabled = setup_logging(settings)
    validate_settings(settings)

    if clients is None:
        clients = build_clients(
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            debug=debug_enabled,
        )

    store = CookieSessionStore(settings.cookie_secret(), secure=settings.production)
    resolver = IdentityResolver(
        clients.read,
        client_id=settings.client_id,
        api_version=settings.api_version,
        verify_id_token=settings.verify_id_token,
    )
    auth_kwargs = {}
    if exchange_code_fn is not None:
        auth_kwargs["exchange_code_fn"] = exchange_code_fn
    auth_routes = AuthRoutes(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scopes=settings.scopes,
        store=store,
        resolver=resolver,
        http_client=clients.write,
        **auth_kwargs,
    )
    publish_routes = PublishRoutes(
        store=store,
        publisher=MediaPublisher(clients.write, api_version=settings.api_version),
        max_image_bytes=settings.max_image_bytes,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        LOGGER.info("lipub %s ready (production=%s)", APP_VERSION, settings.production)
        try:
            yield
        finally:
            await clients.aclose()

    app = Starlette(
        routes=[
            Route("/health", health_route, methods=["GET"]),
            *auth_routes.routes(),
            *publish_routes.routes(),
        ],
        exception_handlers={HTTPException: http_error_handler},
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.clients = clients
    return app
