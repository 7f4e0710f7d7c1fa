import json

import httpx

from auth.token_store import ACCESS_TOKEN_COOKIE
from tests.oauth_helpers import FakeRefresh, build_app, session_cookies, token_response

JSON_HEADERS = {"Accept": "application/json"}


class SpotifyStub:
    """Replays canned (status, json) replies per (method, path); the last reply repeats."""

    def __init__(self, routes: dict[tuple[str, str], list[tuple[int, object]]] | None = None) -> None:
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(204, request=request)
        status, payload = replies.pop(0) if len(replies) > 1 else replies[0]
        if payload is None:
            return httpx.Response(status, request=request)
        return httpx.Response(status, json=payload, request=request)


def test_requires_authentication_for_json_clients() -> None:
    _, client, _ = build_app()

    response = client.get("/api/spotify/devices", headers=JSON_HEADERS)

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required", "redirectTo": "/"}


def test_redirects_browsers_without_session() -> None:
    _, client, _ = build_app()

    response = client.get("/api/spotify/devices", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/"


def test_devices_are_proxied() -> None:
    devices = {"devices": [{"id": "d1", "name": "Laptop", "type": "Computer", "is_active": True}]}
    stub = SpotifyStub({("GET", "/v1/me/player/devices"): [(200, devices)]})
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.get("/api/spotify/devices", headers=JSON_HEADERS)

    assert response.status_code == 200
    assert response.json() == devices
    assert stub.requests[0].headers["authorization"] == "Bearer access-1"


def test_expired_session_is_refreshed_before_proxying() -> None:
    fake = FakeRefresh([token_response("access-new")])
    stub = SpotifyStub({("GET", "/v1/me/player/devices"): [(200, {"devices": []})]})
    _, client, _ = build_app(
        api_handler=stub,
        refresh_token_fn=fake,
        cookies=session_cookies(access_token=None),
    )

    response = client.get("/api/spotify/devices", headers=JSON_HEADERS)

    assert response.status_code == 200
    assert len(fake.calls) == 1
    assert stub.requests[0].headers["authorization"] == "Bearer access-new"
    assert ACCESS_TOKEN_COOKIE in response.headers["set-cookie"]


def test_rejected_token_asks_for_reauthentication() -> None:
    stub = SpotifyStub(
        {("GET", "/v1/me/player/devices"): [(401, {"error": "expired"})]}
    )
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.get("/api/spotify/devices", headers=JSON_HEADERS)

    assert response.status_code == 401
    assert response.json()["action"] == "reauthenticate"
    assert len(stub.requests) == 2


def test_player_without_device_needs_activation() -> None:
    stub = SpotifyStub(
        {
            ("GET", "/v1/me/player"): [(204, None)],
            ("GET", "/v1/me/player/devices"): [(200, {"devices": []})],
        }
    )
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.get("/api/spotify/player", headers=JSON_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"is_playing": False, "device": None, "needs_device": True}


def test_play_on_given_device() -> None:
    stub = SpotifyStub()
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.put(
        "/api/spotify/player/play",
        json={"device_id": "d1", "uris": ["spotify:track:1"], "position_ms": 0},
        headers=JSON_HEADERS,
    )

    assert response.status_code == 204
    request = stub.requests[0]
    assert request.url.path == "/v1/me/player/play"
    assert request.url.params["device_id"] == "d1"
    assert json.loads(request.content) == {"uris": ["spotify:track:1"], "position_ms": 0}


def test_play_uses_active_device_when_none_given() -> None:
    devices = {"devices": [{"id": "d2", "name": "Speaker", "type": "Speaker", "is_active": True}]}
    stub = SpotifyStub({("GET", "/v1/me/player/devices"): [(200, devices)]})
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.put(
        "/api/spotify/player/play", json={"context_uri": "spotify:playlist:1"}, headers=JSON_HEADERS
    )

    assert response.status_code == 204
    assert stub.requests[-1].url.params["device_id"] == "d2"


def test_spotify_errors_are_passed_through() -> None:
    stub = SpotifyStub(
        {("PUT", "/v1/me/player/pause"): [(403, {"error": "premium"})]}
    )
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.put("/api/spotify/player/pause", headers=JSON_HEADERS)

    assert response.status_code == 403
    assert response.json()["spotify_error"] == {"error": "premium"}
    assert "permission" in response.json()["error"]


def test_volume_validation() -> None:
    stub = SpotifyStub()
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    bad = client.put("/api/spotify/player/volume", json={"volume_percent": 101}, headers=JSON_HEADERS)
    good = client.put("/api/spotify/player/volume", json={"volume_percent": 35}, headers=JSON_HEADERS)

    assert bad.status_code == 400
    assert good.status_code == 204
    assert len(stub.requests) == 1
    assert stub.requests[0].url.params["volume_percent"] == "35"


def test_shuffle_validation() -> None:
    _, client, _ = build_app(cookies=session_cookies())

    response = client.put("/api/spotify/player/shuffle", json={"state": "yes"}, headers=JSON_HEADERS)

    assert response.status_code == 400


def test_queue_single_track() -> None:
    stub = SpotifyStub()
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.post(
        "/api/spotify/player/queue", json={"uri": "spotify:track:1"}, headers=JSON_HEADERS
    )

    assert response.status_code == 204
    assert stub.requests[0].url.params["uri"] == "spotify:track:1"


def test_queue_batch_reports_summary() -> None:
    stub = SpotifyStub({("POST", "/v1/me/player/queue"): [(204, None), (404, {"error": "not found"})]})
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.post(
        "/api/spotify/player/queue",
        json={"uris": ["spotify:track:1", "spotify:track:2"]},
        headers=JSON_HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {"successful": 1, "failed": 1}


def test_queue_requires_uri() -> None:
    _, client, _ = build_app(cookies=session_cookies())

    response = client.post("/api/spotify/player/queue", json={}, headers=JSON_HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing uri or uris"}


def test_playlist_tracks() -> None:
    tracks = {"items": [{"track": {"uri": "spotify:track:1"}}]}
    stub = SpotifyStub({("GET", "/v1/playlists/pl1/tracks"): [(200, tracks)]})
    _, client, _ = build_app(api_handler=stub, cookies=session_cookies())

    response = client.get("/api/spotify/playlists/pl1/tracks", headers=JSON_HEADERS)

    assert response.status_code == 200
    assert response.json() == tracks


def test_preflight_for_proxy_paths() -> None:
    _, client, _ = build_app()

    response = client.options(
        "/api/spotify/player/play",
        headers={"Origin": "http://127.0.0.1:8080", "Access-Control-Request-Method": "PUT"},
    )

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "http://127.0.0.1:8080"
    assert "PUT" in response.headers["access-control-allow-methods"]


def test_preflight_for_path_with_parameters() -> None:
    _, client, _ = build_app()

    response = client.options(
        "/api/spotify/playlists/pl1/tracks", headers={"Origin": "http://127.0.0.1:8080"}
    )

    assert response.status_code == 204


def test_undecodable_spotify_response_is_bad_gateway() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.DecodingError("incorrect header check", request=request)

    _, client, _ = build_app(api_handler=handler, cookies=session_cookies())

    response = client.get("/api/spotify/devices", headers=JSON_HEADERS)

    assert response.status_code == 502
    assert response.json()["status"] is None
