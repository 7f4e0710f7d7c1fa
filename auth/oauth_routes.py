from __future__ import annotations

import time

import httpx
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.routing import Route

from auth import spotify_oauth
from auth.cors import cors_preflight_response
from auth.crypto import PKCE_ASSOCIATED_DATA
from auth.errors import AuthError, DecryptionError
from auth.models import PendingAuth
from auth.session import Session, SessionFactory
from auth.spotify_oauth import TokenRequestError
from auth.token_manager import TokenManager
from auth.urls import loopback_url
from partyplay.constants import AUTH_LOGGER, DEFAULT_SCOPES

PKCE_COOKIE = "spotify_pkce"
AUTH_PATHS = (
    "/auth/login",
    "/auth/exchange",
    "/auth/refresh-token",
    "/auth/logout",
    "/auth/status",
    "/auth/validate",
)


class AuthRoutes:
    def __init__(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        sessions: SessionFactory,
        token_manager: TokenManager,
        scopes: list[str] | tuple[str, ...] | None = None,
        pending_auth_ttl_seconds: int = 600,
        after_login_path: str = "/",
        exchange_code_fn=spotify_oauth.exchange_code,
    ) -> None:
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.sessions = sessions
        self.token_manager = token_manager
        self.scopes = tuple(scopes or DEFAULT_SCOPES)
        self.pending_auth_ttl_seconds = pending_auth_ttl_seconds
        self.after_login_path = after_login_path

        self._pkce_cipher = sessions.cipher.for_purpose(PKCE_ASSOCIATED_DATA)
        self._exchange_code_fn = exchange_code_fn

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        routes = [
            Route("/auth/login", self._handle_login, methods=["GET"]),
            Route("/callback", self._handle_callback, methods=["GET"]),
            Route("/auth/exchange", self._handle_exchange, methods=["POST"]),
            Route("/auth/refresh-token", self._handle_refresh_token, methods=["POST"]),
            Route("/auth/logout", self._handle_logout, methods=["POST"]),
            Route("/auth/status", self._handle_status, methods=["GET"]),
            Route("/auth/validate", self._handle_validate, methods=["GET"]),
        ]
        for path in AUTH_PATHS:
            routes.append(Route(path, self._handle_preflight, methods=["OPTIONS"]))
        return routes

    # -- handlers --------------------------------------------------------------

    async def _handle_preflight(self, request: Request) -> Response:
        return cors_preflight_response(request, self.sessions.cors_origins)

    async def _handle_login(self, request: Request) -> Response:
        # Spotify only accepts the loopback IP, and the verifier cookie must be
        # set on the same host the callback will land on.
        loopback = loopback_url(str(request.url))
        if loopback is not None:
            return self.sessions.respond(request, None, RedirectResponse(loopback, status_code=302))

        session = self.sessions.open(request)
        code_verifier = spotify_oauth.generate_code_verifier()
        pending = PendingAuth(
            code_verifier=code_verifier,
            state=spotify_oauth.generate_state(),
            created_at=time.time(),
        )
        session.jar.set(
            PKCE_COOKIE,
            self._pkce_cipher.encrypt(pending.to_json()),
            self.pending_auth_ttl_seconds,
        )

        authorize_url = spotify_oauth.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            code_challenge=spotify_oauth.generate_code_challenge(code_verifier),
            state=pending.state,
        )
        return self.sessions.respond(
            request, session, RedirectResponse(url=authorize_url, status_code=302)
        )

    async def _handle_callback(self, request: Request) -> Response:
        session = self.sessions.open(request)
        raw_pending = session.jar.get(PKCE_COOKIE)
        if raw_pending is not None:
            session.jar.remove(PKCE_COOKIE)

        if request.query_params.get("error"):
            return self.sessions.error(
                request,
                session,
                "authorization_denied",
                f"Spotify authorization returned an error: {request.query_params['error']}",
                400,
            )

        code = request.query_params.get("code")
        if not code:
            return self.sessions.error(request, session, "invalid_request", "Missing code.", 400)

        pending = self._read_pending_auth(raw_pending)
        if pending is None:
            return self.sessions.error(
                request,
                session,
                "invalid_request",
                "Missing or unreadable PKCE verifier; restart the login.",
                400,
            )
        if pending.is_expired(self.pending_auth_ttl_seconds):
            return self.sessions.error(
                request, session, "invalid_request", "Login attempt expired; restart the login.", 400
            )
        if request.query_params.get("state") != pending.state:
            return self.sessions.error(request, session, "invalid_state", "State mismatch.", 400)

        failure = await self._exchange(request, session, code, pending.code_verifier)
        if failure is not None:
            return failure
        return self.sessions.respond(
            request, session, RedirectResponse(url=self.after_login_path, status_code=302)
        )

    async def _handle_exchange(self, request: Request) -> Response:
        session = self.sessions.open(request)
        try:
            payload = await request.json()
        except ValueError:
            return self.sessions.error(request, session, "invalid_request", "Invalid JSON body.", 400)
        if not isinstance(payload, dict):
            return self.sessions.error(request, session, "invalid_request", "Invalid JSON body.", 400)

        code = payload.get("code")
        code_verifier = payload.get("code_verifier")
        redirect_uri = payload.get("redirect_uri")
        if not isinstance(code, str) or not code or not isinstance(code_verifier, str) or not code_verifier:
            return self.sessions.error(
                request, session, "invalid_request", "Missing code or verifier.", 400
            )
        if redirect_uri is not None and redirect_uri != self.redirect_uri:
            return self.sessions.error(
                request,
                session,
                "invalid_redirect_uri",
                f"redirect_uri must be {self.redirect_uri}.",
                400,
            )

        failure = await self._exchange(request, session, code, code_verifier)
        if failure is not None:
            return failure
        return self.sessions.json(
            request,
            session,
            {"success": True, "message": "Tokens exchanged and stored securely"},
        )

    async def _handle_refresh_token(self, request: Request) -> Response:
        session = self.sessions.open(request)
        try:
            await self.token_manager.refresh(session.store)
        except AuthError as error:
            AUTH_LOGGER.warning("Server-side token refresh failed: %s", error)
            return self.sessions.error(
                request,
                session,
                "token_refresh_failed",
                str(error),
                401,
                action=error.action,
            )

        expires_at = session.store.get_token_expiry()
        now = session.store.current_time_ms()
        return self.sessions.json(
            request,
            session,
            {
                "success": True,
                "expires_in": max(0, ((expires_at or now) - now) // 1000),
                "expiresAt": expires_at,
            },
        )

    async def _handle_logout(self, request: Request) -> Response:
        session = self.sessions.open(request)
        session.store.clear_tokens()
        return self.sessions.json(
            request, session, {"success": True, "message": "Logged out successfully"}
        )

    async def _handle_status(self, request: Request) -> Response:
        session = self.sessions.open(request)
        token_data = session.store.get_all_token_data()
        token_valid = token_data.is_valid if token_data else False
        return self.sessions.json(
            request,
            session,
            {
                "isAuthenticated": token_valid,
                "hasTokens": token_data is not None,
                "tokenExpiry": token_data.expires_at if token_data else None,
                "needsRefresh": token_data is not None and not token_valid,
                "tokenValid": token_valid,
            },
        )

    async def _handle_validate(self, request: Request) -> Response:
        session = self.sessions.open(request)
        status = self.token_manager.token_status(session.store)
        if not status["hasToken"]:
            return self.sessions.json(
                request, session, {"valid": False, "error": "No tokens found"}, status_code=401
            )
        return self.sessions.json(
            request,
            session,
            {
                "valid": status["isValid"],
                "needsRefresh": status["needsRefresh"],
                "expiresAt": status["expiresAt"],
                "timeUntilExpiry": status["timeUntilExpiry"],
            },
        )

    # -- helpers ---------------------------------------------------------------

    def _read_pending_auth(self, raw: str | None) -> PendingAuth | None:
        if not raw:
            return None
        try:
            return PendingAuth.from_json(self._pkce_cipher.decrypt(raw))
        except DecryptionError as error:
            AUTH_LOGGER.warning("Rejected PKCE cookie (reason=%s)", error.reason)
            return None
        except ValueError as error:
            AUTH_LOGGER.warning("Rejected PKCE cookie: %s", error)
            return None

    async def _exchange(
        self,
        request: Request,
        session: Session,
        code: str,
        code_verifier: str,
    ) -> Response | None:
        try:
            exchanged = await self._exchange_code_fn(
                client_id=self.client_id,
                code=code,
                redirect_uri=self.redirect_uri,
                code_verifier=code_verifier,
            )
        except TokenRequestError as error:
            AUTH_LOGGER.warning(
                "Spotify token exchange failed status=%s error=%s",
                error.status_code,
                error.error_code,
            )
            status_code = error.status_code if error.status_code and error.status_code < 500 else 502
            return self.sessions.error(
                request,
                session,
                "token_exchange_failed",
                "Failed to exchange Spotify authorization code.",
                status_code,
                details=error.error,
            )
        except httpx.RequestError as error:
            AUTH_LOGGER.warning("Spotify token exchange failed: %s", error)
            return self.sessions.error(
                request,
                session,
                "token_exchange_failed",
                "Could not reach Spotify to exchange the authorization code.",
                502,
            )

        if not exchanged.refresh_token:
            return self.sessions.error(
                request,
                session,
                "token_exchange_failed",
                "Spotify did not issue a refresh token.",
                502,
            )

        session.store.set_tokens(
            exchanged.access_token, exchanged.refresh_token, exchanged.expires_in
        )
        AUTH_LOGGER.info("Stored Spotify tokens after code exchange")
        return None
