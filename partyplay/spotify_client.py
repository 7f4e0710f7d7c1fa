from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx

from auth.errors import AuthError
from auth.token_manager import TokenManager
from auth.token_store import SecureTokenStore
from .constants import LOGGER, SPOTIFY_API_BASE_URL
from .http import (
    DEFAULT_RETRY_AFTER_SECONDS,
    MAX_RETRY_AFTER_SECONDS,
    friendly_error_message,
    parse_retry_after,
)


@dataclass
class ApiError:
    status: int | None
    message: str
    spotify_error: dict = field(default_factory=dict)
    retry_after: int | None = None
    action: str | None = None

    def to_payload(self) -> dict:
        return {
            "error": self.message,
            "status": self.status,
            "action": self.action,
            "spotify_error": self.spotify_error,
        }


@dataclass
class ApiResult:
    ok: bool
    status: int | None
    data: Any = None
    error: ApiError | None = None

    @classmethod
    def success(cls, status: int, data: Any = None) -> "ApiResult":
        return cls(ok=True, status=status, data=data)

    @classmethod
    def failure(cls, error: ApiError) -> "ApiResult":
        return cls(ok=False, status=error.status, error=error)

    @classmethod
    def auth_failure(cls, message: str) -> "ApiResult":
        return cls.failure(
            ApiError(status=401, message=message, action=AuthError.action)
        )

    @property
    def is_auth_error(self) -> bool:
        return self.error is not None and self.error.action == AuthError.action


def _error_body(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text}
    if isinstance(payload, dict):
        return payload
    return {"message": response.text}


def _device_params(device_id: str | None, **params: Any) -> dict[str, Any]:
    if device_id:
        params["device_id"] = device_id
    return params


class SpotifyAPIClient:
    """Calls the Spotify Web API on behalf of the session behind ``store``.

    Failures never raise: every call resolves to an :class:`ApiResult`. A 401
    triggers one explicit token refresh and a single retry, a 429 waits for
    ``Retry-After`` (up to ``max_retry_after`` seconds, otherwise the 429 is
    returned) and retries once; anything else is returned as-is. The retry is
    final: a 401 on it is reported as needing reauthentication.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        store: SecureTokenStore,
        http_client: httpx.AsyncClient,
        *,
        base_url: str = SPOTIFY_API_BASE_URL,
        sleep=asyncio.sleep,
        max_retry_after: int = MAX_RETRY_AFTER_SECONDS,
    ) -> None:
        self.token_manager = token_manager
        self.max_retry_after = max_retry_after
        self.store = store
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        is_retry: bool = False,
    ) -> ApiResult:
        try:
            token = await self.token_manager.get_valid_token(self.store)
        except AuthError as error:
            LOGGER.warning("No usable Spotify token for %s %s: %s", method, endpoint, error)
            return ApiResult.auth_failure(f"Unable to obtain valid access token: {error}")

        try:
            response = await self._http_client.request(
                method,
                self._url(endpoint),
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as error:
            LOGGER.warning("Spotify request %s %s failed: %s", method, endpoint, error)
            return ApiResult.failure(ApiError(status=None, message=friendly_error_message(None)))

        if response.is_success:
            return ApiResult.success(response.status_code, self._parse_body(response))

        error = self._error_from(response)
        if is_retry:
            if error.status == 401:
                error.action = AuthError.action
            return ApiResult.failure(error)

        if error.status == 401:
            LOGGER.info("Spotify returned 401 for %s %s; refreshing token", method, endpoint)
            try:
                await self.token_manager.refresh(self.store)
            except AuthError as refresh_error:
                return ApiResult.auth_failure(f"Token refresh failed: {refresh_error}")
            return await self.request(method, endpoint, params=params, json=json, is_retry=True)

        if error.status == 429:
            wait_seconds = error.retry_after
            if wait_seconds is None:
                wait_seconds = DEFAULT_RETRY_AFTER_SECONDS
            if wait_seconds > self.max_retry_after:
                LOGGER.warning(
                    "Rate limited for %ss on %s %s; not waiting", wait_seconds, method, endpoint
                )
                return ApiResult.failure(error)
            LOGGER.warning("Rate limited - waiting %ss before retrying %s %s", wait_seconds, method, endpoint)
            await self._sleep(wait_seconds)
            return await self.request(method, endpoint, params=params, json=json, is_retry=True)

        return ApiResult.failure(error)

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self._base_url}{endpoint}"

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    @staticmethod
    def _error_from(response: httpx.Response) -> ApiError:
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        return ApiError(
            status=response.status_code,
            message=friendly_error_message(response.status_code, retry_after),
            spotify_error=_error_body(response),
            retry_after=retry_after,
        )

    # -- player ----------------------------------------------------------------

    async def get_playback_state(self) -> ApiResult:
        return await self.request("GET", "/me/player")

    async def get_currently_playing(self) -> ApiResult:
        return await self.request("GET", "/me/player/currently-playing")

    async def get_devices(self) -> ApiResult:
        return await self.request("GET", "/me/player/devices")

    async def play(self, context: dict | None = None, device_id: str | None = None) -> ApiResult:
        return await self.request(
            "PUT", "/me/player/play", params=_device_params(device_id), json=context or {}
        )

    async def pause(self, device_id: str | None = None) -> ApiResult:
        return await self.request("PUT", "/me/player/pause", params=_device_params(device_id))

    async def next(self, device_id: str | None = None) -> ApiResult:
        return await self.request("POST", "/me/player/next", params=_device_params(device_id))

    async def previous(self, device_id: str | None = None) -> ApiResult:
        return await self.request("POST", "/me/player/previous", params=_device_params(device_id))

    async def add_to_queue(self, uri: str, device_id: str | None = None) -> ApiResult:
        return await self.request(
            "POST", "/me/player/queue", params=_device_params(device_id, uri=uri)
        )

    async def transfer_playback(self, device_id: str, play: bool = False) -> ApiResult:
        return await self.request(
            "PUT", "/me/player", json={"device_ids": [device_id], "play": play}
        )

    async def set_volume(self, volume_percent: int, device_id: str | None = None) -> ApiResult:
        return await self.request(
            "PUT",
            "/me/player/volume",
            params=_device_params(device_id, volume_percent=int(volume_percent)),
        )

    async def set_repeat(self, state: str, device_id: str | None = None) -> ApiResult:
        return await self.request(
            "PUT", "/me/player/repeat", params=_device_params(device_id, state=state)
        )

    async def set_shuffle(self, state: bool, device_id: str | None = None) -> ApiResult:
        return await self.request(
            "PUT",
            "/me/player/shuffle",
            params=_device_params(device_id, state="true" if state else "false"),
        )

    # -- catalog ---------------------------------------------------------------

    async def get_playlist(self, playlist_id: str) -> ApiResult:
        return await self.request("GET", f"/playlists/{playlist_id}")

    async def get_playlist_tracks(self, playlist_id: str, limit: int = 100) -> ApiResult:
        return await self.request("GET", f"/playlists/{playlist_id}/tracks", params={"limit": limit})

    async def get_album_tracks(self, album_id: str, limit: int = 50) -> ApiResult:
        return await self.request("GET", f"/albums/{album_id}/tracks", params={"limit": limit})

    async def search(self, query: str, type: str = "track", limit: int = 20) -> ApiResult:
        return await self.request(
            "GET", "/search", params={"q": query, "type": type, "limit": limit}
        )
