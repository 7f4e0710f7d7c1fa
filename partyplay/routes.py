from __future__ import annotations

import asyncio
from typing import Any

import httpx
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.routing import Route

from auth.cors import cors_preflight_response
from auth.session import Session, SessionFactory
from auth.token_manager import TokenManager
from .constants import SPOTIFY_API_BASE_URL
from .playback import PlaybackManager, QueueManager
from .spotify_client import ApiResult, SpotifyAPIClient

API_PREFIX = "/api/spotify"


class PlaybackRoutes:
    """Proxies game playback actions to Spotify so the browser never sees a token."""

    def __init__(
        self,
        *,
        sessions: SessionFactory,
        token_manager: TokenManager,
        http_client: httpx.AsyncClient,
        api_base_url: str = SPOTIFY_API_BASE_URL,
        login_path: str = "/",
        sleep=asyncio.sleep,
    ) -> None:
        self.sessions = sessions
        self.token_manager = token_manager
        self.http_client = http_client
        self.api_base_url = api_base_url
        self.login_path = login_path
        self._sleep = sleep

    def routes(self) -> list[Route]:
        table = (
            ("/player", self._handle_player, "GET"),
            ("/devices", self._handle_devices, "GET"),
            ("/player/play", self._handle_play, "PUT"),
            ("/player/pause", self._handle_pause, "PUT"),
            ("/player/next", self._handle_next, "POST"),
            ("/player/previous", self._handle_previous, "POST"),
            ("/player/volume", self._handle_volume, "PUT"),
            ("/player/shuffle", self._handle_shuffle, "PUT"),
            ("/player/queue", self._handle_queue, "POST"),
            ("/player/currently-playing", self._handle_currently_playing, "GET"),
            ("/playlists/{playlist_id}/tracks", self._handle_playlist_tracks, "GET"),
            ("/albums/{album_id}/tracks", self._handle_album_tracks, "GET"),
        )
        routes = [
            Route(f"{API_PREFIX}{path}", self._guarded(handler), methods=[method])
            for path, handler, method in table
        ]
        for path, _, _ in table:
            routes.append(Route(f"{API_PREFIX}{path}", self._handle_preflight, methods=["OPTIONS"]))
        return routes

    def client_for(self, session: Session) -> SpotifyAPIClient:
        return SpotifyAPIClient(
            self.token_manager,
            session.store,
            self.http_client,
            base_url=self.api_base_url,
            sleep=self._sleep,
        )

    # -- plumbing --------------------------------------------------------------

    async def _handle_preflight(self, request: Request) -> Response:
        return cors_preflight_response(request, self.sessions.cors_origins)

    def _guarded(self, handler):
        async def endpoint(request: Request) -> Response:
            session = self.sessions.open(request)
            if not session.has_credentials():
                return self._unauthenticated(request, session)
            return await handler(request, session)

        endpoint.__name__ = handler.__name__
        return endpoint

    def _unauthenticated(self, request: Request, session: Session) -> Response:
        if "application/json" in request.headers.get("accept", ""):
            return self.sessions.json(
                request,
                session,
                {"error": "Authentication required", "redirectTo": self.login_path},
                status_code=401,
            )
        return self.sessions.respond(
            request, session, RedirectResponse(self.login_path, status_code=302)
        )

    def _result(
        self,
        request: Request,
        session: Session,
        result: ApiResult,
        *,
        empty: Any = None,
    ) -> Response:
        if result.ok:
            if result.data is None and empty is None:
                return self.sessions.respond(request, session, Response(status_code=204))
            data = result.data if result.data is not None else empty
            return self.sessions.json(request, session, data)

        error = result.error
        return self.sessions.json(
            request,
            session,
            error.to_payload(),
            status_code=error.status if error.status else 502,
        )

    def _bad_request(self, request: Request, session: Session, message: str) -> Response:
        return self.sessions.json(request, session, {"error": message}, status_code=400)

    @staticmethod
    async def _body(request: Request) -> dict | None:
        raw = await request.body()
        if not raw.strip():
            return {}
        try:
            payload = await request.json()
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    # -- handlers --------------------------------------------------------------

    async def _handle_player(self, request: Request, session: Session) -> Response:
        playback = PlaybackManager(self.client_for(session), sleep=self._sleep)
        return self._result(request, session, await playback.resolve_playback_state())

    async def _handle_devices(self, request: Request, session: Session) -> Response:
        result = await self.client_for(session).get_devices()
        return self._result(request, session, result, empty={"devices": []})

    async def _handle_play(self, request: Request, session: Session) -> Response:
        body = await self._body(request)
        if body is None:
            return self._bad_request(request, session, "Invalid JSON body")

        client = self.client_for(session)
        device_id = body.get("device_id")
        if not device_id:
            device_id = await PlaybackManager(client, sleep=self._sleep).ensure_active_device()

        context = {
            key: body[key]
            for key in ("context_uri", "uris", "offset", "position_ms")
            if body.get(key) is not None
        }
        return self._result(request, session, await client.play(context, device_id))

    async def _handle_pause(self, request: Request, session: Session) -> Response:
        return await self._simple_command(request, session, "pause")

    async def _handle_next(self, request: Request, session: Session) -> Response:
        return await self._simple_command(request, session, "next")

    async def _handle_previous(self, request: Request, session: Session) -> Response:
        return await self._simple_command(request, session, "previous")

    async def _simple_command(self, request: Request, session: Session, command: str) -> Response:
        body = await self._body(request)
        if body is None:
            return self._bad_request(request, session, "Invalid JSON body")
        client = self.client_for(session)
        result = await getattr(client, command)(body.get("device_id"))
        return self._result(request, session, result)

    async def _handle_volume(self, request: Request, session: Session) -> Response:
        body = await self._body(request)
        volume = body.get("volume_percent") if body is not None else None
        if not isinstance(volume, int) or isinstance(volume, bool) or not 0 <= volume <= 100:
            return self._bad_request(request, session, "volume_percent must be an integer 0-100")
        result = await self.client_for(session).set_volume(volume, body.get("device_id"))
        return self._result(request, session, result)

    async def _handle_shuffle(self, request: Request, session: Session) -> Response:
        body = await self._body(request)
        state = body.get("state") if body is not None else None
        if not isinstance(state, bool):
            return self._bad_request(request, session, "state must be a boolean")
        result = await self.client_for(session).set_shuffle(state, body.get("device_id"))
        return self._result(request, session, result)

    async def _handle_queue(self, request: Request, session: Session) -> Response:
        body = await self._body(request)
        if body is None:
            return self._bad_request(request, session, "Invalid JSON body")

        queue = QueueManager(self.client_for(session), sleep=self._sleep)
        uris = body.get("uris")
        uri = body.get("uri")
        device_id = body.get("device_id")

        if isinstance(uris, list):
            summary = await queue.queue_tracks([str(item) for item in uris], device_id)
            return self.sessions.json(request, session, summary.to_dict())
        if isinstance(uri, str) and uri:
            if await queue.queue_track(uri, device_id):
                return self.sessions.respond(request, session, Response(status_code=204))
            return self.sessions.json(
                request, session, {"error": "Failed to queue track"}, status_code=502
            )
        return self._bad_request(request, session, "Missing uri or uris")

    async def _handle_currently_playing(self, request: Request, session: Session) -> Response:
        result = await self.client_for(session).get_currently_playing()
        return self._result(request, session, result, empty={})

    async def _handle_playlist_tracks(self, request: Request, session: Session) -> Response:
        playlist_id = request.path_params["playlist_id"]
        result = await self.client_for(session).get_playlist_tracks(playlist_id)
        return self._result(request, session, result)

    async def _handle_album_tracks(self, request: Request, session: Session) -> Response:
        album_id = request.path_params["album_id"]
        result = await self.client_for(session).get_album_tracks(album_id)
        return self._result(request, session, result)
