from __future__ import annotations

import contextlib
import dataclasses
import functools
import os

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth import spotify_oauth
from auth.cookie_jar import CookiePolicy
from auth.crypto import TokenCipher
from auth.oauth_routes import PKCE_COOKIE, AuthRoutes
from auth.session import SessionFactory
from auth.token_manager import TokenManager
from partyplay.constants import APP_VERSION, DEFAULT_PORT, LOGGER
from partyplay.env import Settings, load_env, load_settings, setup_logging
from partyplay.http import build_http_client
from partyplay.routes import PlaybackRoutes


def cookie_policy_for(settings: Settings) -> CookiePolicy:
    if settings.is_production:
        return CookiePolicy(secure=True, samesite="strict", domain=settings.cookie_domain)
    return CookiePolicy(secure=False, samesite="lax", domain=settings.cookie_domain)


def cookie_overrides_for(settings: Settings) -> dict[str, CookiePolicy]:
    # The PKCE cookie has to come back on the cross-site redirect from Spotify.
    return {PKCE_COOKIE: dataclasses.replace(cookie_policy_for(settings), samesite="lax")}


def health_route(settings: Settings) -> Route:
    async def health(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "environment": settings.environment,
            }
        )

    return Route("/health", health, methods=["GET"])


def log_configuration(settings: Settings) -> None:
    policy = cookie_policy_for(settings)
    LOGGER.info(
        "Security configuration environment=%s secure_cookies=%s samesite=%s redirect_uri=%s",
        settings.environment,
        policy.secure,
        policy.samesite,
        settings.redirect_uri,
    )
    if not settings.is_production:
        LOGGER.warning("Development mode - some security features are relaxed")


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    token_manager: TokenManager | None = None,
    exchange_code_fn=None,
) -> Starlette:
    if settings is None:
        load_env()
        settings = load_settings()
        setup_logging(settings.debug)
    log_configuration(settings)

    own_client = http_client is None
    client = http_client or build_http_client(
        timeout=settings.api_timeout, debug_enabled=settings.debug
    )

    token_manager = token_manager or TokenManager(
        settings.client_id,
        refresh_token_fn=spotify_oauth.refresh_token,
        http_client=client,
    )
    sessions = SessionFactory(
        TokenCipher(settings.encryption_key),
        cookie_policy=cookie_policy_for(settings),
        cookie_overrides=cookie_overrides_for(settings),
        cors_origins=settings.cors_origins,
        production=settings.is_production,
    )
    auth_routes = AuthRoutes(
        client_id=settings.client_id,
        redirect_uri=settings.redirect_uri,
        sessions=sessions,
        token_manager=token_manager,
        scopes=settings.scopes,
        exchange_code_fn=exchange_code_fn
        or functools.partial(spotify_oauth.exchange_code, client=client),
    )
    playback_routes = PlaybackRoutes(
        sessions=sessions,
        token_manager=token_manager,
        http_client=client,
        api_base_url=settings.api_base_url,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        if own_client:
            await client.aclose()

    app = Starlette(
        routes=[health_route(settings), *auth_routes.routes(), *playback_routes.routes()],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.token_manager = token_manager
    app.state.http_client = client
    return app


def main() -> None:
    load_env()
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", str(DEFAULT_PORT)))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
