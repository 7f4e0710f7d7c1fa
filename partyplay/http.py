from __future__ import annotations

import time
from email.utils import parsedate_to_datetime

import httpx

from .constants import LOGGER

DEFAULT_RETRY_AFTER_SECONDS = 1
MAX_RETRY_AFTER_SECONDS = 10


def parse_retry_after(header: str | None, *, now: float | None = None) -> int | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if header is None or not header.strip():
        return None
    raw = header.strip()
    try:
        return max(0, int(raw))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None

    current = time.time() if now is None else now
    return max(0, int(retry_at.timestamp() - current))


def friendly_error_message(status_code: int | None, wait_seconds: int | None = None) -> str:
    if status_code is None:
        return "Could not reach Spotify. Check your connection and try again."
    if status_code == 401:
        return "Authentication failed. Your Spotify session may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action (Spotify Premium may be required)."
    if status_code == 404:
        return "No active Spotify device was found or the resource does not exist."
    if status_code == 429:
        wait = 0 if wait_seconds is None else wait_seconds
        return f"Rate limit exceeded. Please wait {wait} seconds."
    if status_code >= 500:
        return "Spotify is experiencing issues. Please try again later."
    return f"Spotify API request failed with status {status_code}."


async def log_rate_limits(response: httpx.Response) -> None:
    if response.status_code != 429:
        return
    LOGGER.warning(
        "Rate limit warning endpoint=%s retry_after=%s",
        response.request.url,
        response.headers.get("retry-after"),
    )


def build_log_hooks(debug_enabled: bool) -> dict[str, list]:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        LOGGER.info("Spotify request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        LOGGER.info(
            "Spotify response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("Spotify error body: %s", text)

    return {
        "request": [log_request],
        "response": [log_rate_limits, log_response],
    }


def build_http_client(
    *,
    timeout: float,
    debug_enabled: bool,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        event_hooks=build_log_hooks(debug_enabled),
    )
