from __future__ import annotations

import urllib.parse

LOOPBACK_HOST = "127.0.0.1"


def canonical_redirect_uri(configured: str | None, *, port: int) -> str:
    """Return the single redirect URI used for both authorize and exchange.

    Spotify only accepts the loopback address for local development, so a
    ``localhost`` host is always rewritten to ``127.0.0.1``.
    """
    if not configured or not configured.strip():
        return f"http://{LOOPBACK_HOST}:{port}/callback"

    configured = configured.strip()
    return loopback_url(configured) or configured


def loopback_url(url: str) -> str | None:
    """Return ``url`` moved onto 127.0.0.1 when it targets localhost, else None."""
    parsed = urllib.parse.urlparse(url)
    if parsed.hostname != "localhost":
        return None
    netloc = LOOPBACK_HOST if parsed.port is None else f"{LOOPBACK_HOST}:{parsed.port}"
    return urllib.parse.urlunparse(parsed._replace(netloc=netloc))

