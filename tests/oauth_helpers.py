import time
import urllib.parse

import httpx
from starlette.testclient import TestClient

import server
from auth.crypto import TokenCipher
from auth.spotify_oauth import TokenResponse
from auth.token_manager import TokenManager
from auth.token_store import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    TOKEN_EXPIRY_COOKIE,
    TOKEN_TYPE_COOKIE,
)
from partyplay.env import Settings

TEST_KEY = bytes(range(32))
TEST_KEY_HEX = TEST_KEY.hex()
NOW = 1_700_000_000.0
REDIRECT_URI = "http://127.0.0.1:8080/callback"


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def token_response(access_token="access-new", refresh_token=None, expires_in=3600):
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        expires_at=time.time() + expires_in,
        scope="user-read-playback-state",
    )


def make_settings(**overrides) -> Settings:
    values = {
        "client_id": "client-123",
        "encryption_key": TEST_KEY,
        "redirect_uri": REDIRECT_URI,
        "cors_origins": frozenset({"http://127.0.0.1:8080"}),
        "debug": False,
    }
    values.update(overrides)
    return Settings(**values)


def session_cookies(
    access_token: str | None = "access-1",
    refresh_token: str | None = "refresh-1",
    expires_in_seconds: int = 3600,
) -> dict[str, str]:
    cipher = TokenCipher(TEST_KEY)
    cookies = {TOKEN_TYPE_COOKIE: "Bearer"}
    if access_token is not None:
        cookies[ACCESS_TOKEN_COOKIE] = cipher.encrypt(access_token)
        cookies[TOKEN_EXPIRY_COOKIE] = str(int((time.time() + expires_in_seconds) * 1000))
    if refresh_token is not None:
        cookies[REFRESH_TOKEN_COOKIE] = cipher.encrypt(refresh_token)
    return cookies


def build_app(
    *,
    api_handler=None,
    exchange_code_fn=None,
    refresh_token_fn=None,
    settings: Settings | None = None,
    cookies: dict[str, str] | None = None,
    base_url: str = "http://testserver",
):
    async def _default_exchange(**kwargs):
        del kwargs
        return token_response("access-1", "refresh-1")

    async def _default_refresh(**kwargs):
        del kwargs
        return token_response("access-refreshed")

    async def _default_api(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204, request=request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(api_handler or _default_api))
    token_manager = TokenManager(
        "client-123",
        refresh_token_fn=refresh_token_fn or _default_refresh,
        sleep=SleepRecorder(),
    )
    app = server.create_app(
        settings or make_settings(),
        http_client=http_client,
        token_manager=token_manager,
        exchange_code_fn=exchange_code_fn or _default_exchange,
    )
    return app, TestClient(app, base_url=base_url, cookies=cookies), token_manager


def start_login(test_client: TestClient) -> dict:
    response = test_client.get("/auth/login", follow_redirects=False)
    query = urllib.parse.parse_qs(urllib.parse.urlparse(response.headers["location"]).query)
    return {"response": response, "query": query, "state": query["state"][0]}


class FakeRefresh:
    """Stands in for ``spotify_oauth.refresh_token``; replays ``outcomes`` in order."""

    def __init__(self, outcomes: list, gate=None) -> None:
        self.outcomes = outcomes
        self.gate = gate
        self.calls: list[dict] = []

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes[min(len(self.calls) - 1, len(self.outcomes) - 1)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
