from __future__ import annotations

import logging

LOGGER = logging.getLogger("partyplay.spotify")
AUTH_LOGGER = logging.getLogger("partyplay.auth")
APP_VERSION = "0.1.0"

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"
DEFAULT_SCOPES = (
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-private",
    "user-read-email",
)
DEFAULT_PORT = 8080
DEV_CORS_ORIGINS = {"http://localhost:8080", "http://127.0.0.1:8080"}
