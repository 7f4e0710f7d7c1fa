from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from auth import spotify_oauth
from auth.errors import (
    NoRefreshTokenError,
    RefreshFailedError,
    RefreshTerminalError,
    RefreshTransientError,
)
from auth.spotify_oauth import TokenRequestError, TokenResponse
from auth.token_store import DEFAULT_BUFFER_MINUTES, SecureTokenStore
from partyplay.constants import AUTH_LOGGER

RefreshTokenFn = Callable[..., Awaitable[TokenResponse]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before ``attempt`` (zero-based); the first attempt never waits."""
        if attempt <= 0:
            return 0.0
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


def refresh_fingerprint(refresh_token: str) -> str:
    # Only disambiguates concurrent callers; never used as a security boundary.
    return hashlib.sha256(refresh_token[-10:].encode("utf-8")).hexdigest()[:16]


def is_non_retryable(error: TokenRequestError) -> bool:
    status = error.status_code
    if status is None:
        return False
    if status == 400 and error.error_code == "invalid_grant":
        return True
    return 400 <= status < 500 and status not in (401, 429)


class TokenManager:
    """Hands out valid Spotify access tokens, refreshing them when needed.

    One instance is shared by the whole process. Concurrent callers that hold
    the same refresh token share a single in-flight refresh; the entry is
    dropped as soon as that refresh settles, whatever the outcome.
    """

    def __init__(
        self,
        client_id: str,
        *,
        refresh_token_fn: RefreshTokenFn = spotify_oauth.refresh_token,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        buffer_minutes: float = DEFAULT_BUFFER_MINUTES,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client_id = client_id
        self.retry_policy = retry_policy or RetryPolicy()
        self.buffer_minutes = buffer_minutes
        self._refresh_token_fn = refresh_token_fn
        self._http_client = http_client
        self._sleep = sleep
        self._logger = logger or AUTH_LOGGER
        self._refresh_operations: dict[str, asyncio.Task] = {}

    @property
    def active_refresh_count(self) -> int:
        return len(self._refresh_operations)

    def clear_refresh_operations(self) -> None:
        self._refresh_operations.clear()

    async def get_valid_token(self, store: SecureTokenStore) -> str:
        if store.is_token_valid(self.buffer_minutes):
            access_token = store.get_access_token()
            if access_token:
                return access_token
        return await self.refresh(store)

    async def refresh(self, store: SecureTokenStore) -> str:
        """Refresh unconditionally, joining any refresh already in flight."""
        refresh_token = store.get_refresh_token()
        if not refresh_token:
            raise NoRefreshTokenError()

        key = refresh_fingerprint(refresh_token)
        operation = self._refresh_operations.get(key)
        if operation is None:
            operation = asyncio.ensure_future(self._run_refresh(key, refresh_token))
            self._refresh_operations[key] = operation
        else:
            self._logger.info("Joining in-flight token refresh (fingerprint=%s)", key)

        token = await asyncio.shield(operation)
        self._apply(store, token)
        return token.access_token

    def token_status(self, store: SecureTokenStore) -> dict:
        token_data = store.get_all_token_data()
        if token_data is None:
            return {
                "hasToken": False,
                "isValid": False,
                "needsRefresh": False,
                "expiresAt": None,
                "timeUntilExpiry": None,
            }

        time_until_expiry = token_data.expires_at - store.current_time_ms()
        return {
            "hasToken": True,
            "isValid": token_data.is_valid,
            "needsRefresh": time_until_expiry < self.buffer_minutes * 60 * 1000,
            "expiresAt": token_data.expires_at,
            "timeUntilExpiry": time_until_expiry,
            "expiresInMinutes": time_until_expiry // (60 * 1000),
        }

    # -- internals -------------------------------------------------------------

    async def _run_refresh(self, key: str, refresh_token: str) -> TokenResponse:
        try:
            return await self._perform_refresh(refresh_token)
        finally:
            if self._refresh_operations.get(key) is asyncio.current_task():
                del self._refresh_operations[key]

    async def _perform_refresh(self, refresh_token: str) -> TokenResponse:
        policy = self.retry_policy
        last_error: Exception | None = None

        for attempt in range(policy.max_attempts):
            if attempt > 0:
                delay = policy.delay_for(attempt)
                self._logger.info(
                    "Token refresh retry attempt %s/%s after %ss",
                    attempt + 1,
                    policy.max_attempts,
                    delay,
                )
                await self._sleep(delay)

            try:
                token = await self._attempt_refresh(refresh_token)
            except RefreshTransientError as error:
                last_error = error
                self._logger.warning("Token refresh attempt %s failed: %s", attempt + 1, error)
                continue

            self._logger.info("Token refresh successful")
            return token

        raise RefreshFailedError(
            f"Token refresh failed after {policy.max_attempts} attempts: {last_error}",
            attempts=policy.max_attempts,
        )

    async def _attempt_refresh(self, refresh_token: str) -> TokenResponse:
        kwargs = {"client_id": self.client_id, "refresh_token": refresh_token}
        if self._http_client is not None:
            kwargs["client"] = self._http_client

        try:
            return await self._refresh_token_fn(**kwargs)
        except TokenRequestError as error:
            if is_non_retryable(error):
                self._logger.warning(
                    "Non-retryable token refresh error status=%s error=%s",
                    error.status_code,
                    error.error_code,
                )
                raise RefreshTerminalError(
                    f"Refresh token rejected: {error}",
                    status_code=error.status_code,
                    spotify_error=error.error,
                ) from error
            raise RefreshTransientError(str(error)) from error
        except httpx.RequestError as error:
            raise RefreshTransientError(f"Network error during token refresh: {error}") from error

    def _apply(self, store: SecureTokenStore, token: TokenResponse) -> None:
        if token.refresh_token:
            store.set_tokens(token.access_token, token.refresh_token, token.expires_in)
        else:
            store.update_access_token(token.access_token, token.expires_in)
