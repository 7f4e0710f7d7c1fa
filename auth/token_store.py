from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from auth.cookie_jar import CookieJar
from auth.crypto import TokenCipher
from auth.errors import DecryptionError
from partyplay.constants import AUTH_LOGGER

ACCESS_TOKEN_COOKIE = "spotify_access_token"
REFRESH_TOKEN_COOKIE = "spotify_refresh_token"
TOKEN_EXPIRY_COOKIE = "spotify_token_expiry"
TOKEN_TYPE_COOKIE = "spotify_token_type"
TOKEN_COOKIES = (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    TOKEN_EXPIRY_COOKIE,
    TOKEN_TYPE_COOKIE,
)

REFRESH_TOKEN_MAX_AGE_SECONDS = 30 * 24 * 60 * 60
DEFAULT_BUFFER_MINUTES = 5


@dataclass
class TokenData:
    access_token: str
    refresh_token: str
    expires_at: int
    token_type: str = "Bearer"
    is_valid: bool = False


def now_ms(clock: Callable[[], float] = time.time) -> int:
    return int(clock() * 1000)


class SecureTokenStore:
    """Encrypted Spotify token storage on top of a :class:`CookieJar`.

    Access and refresh tokens are sealed independently. The expiry is kept in
    plaintext epoch milliseconds so validity can be answered without
    decrypting anything but the access token.
    """

    def __init__(
        self,
        jar: CookieJar,
        cipher: TokenCipher,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.jar = jar
        self._cipher = cipher
        self._clock = clock

    def current_time_ms(self) -> int:
        return now_ms(self._clock)

    def set_tokens(self, access_token: str, refresh_token: str, expires_in: int) -> None:
        self._write_access_token(access_token, expires_in)
        self.jar.set(
            REFRESH_TOKEN_COOKIE,
            self._cipher.encrypt(refresh_token),
            REFRESH_TOKEN_MAX_AGE_SECONDS,
        )

    def update_access_token(self, access_token: str, expires_in: int) -> None:
        self._write_access_token(access_token, expires_in)

    def get_access_token(self) -> str | None:
        return self._read_secret(ACCESS_TOKEN_COOKIE)

    def get_refresh_token(self) -> str | None:
        return self._read_secret(REFRESH_TOKEN_COOKIE)

    def get_token_expiry(self) -> int | None:
        raw = self.jar.get(TOKEN_EXPIRY_COOKIE)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            AUTH_LOGGER.warning("Ignoring non-numeric %s cookie", TOKEN_EXPIRY_COOKIE)
            return None

    def get_token_type(self) -> str:
        return self.jar.get(TOKEN_TYPE_COOKIE) or "Bearer"

    def is_token_valid(self, buffer_minutes: float = DEFAULT_BUFFER_MINUTES) -> bool:
        access_token = self.get_access_token()
        expires_at = self.get_token_expiry()
        if not access_token or expires_at is None:
            return False
        buffer_ms = buffer_minutes * 60 * 1000
        return self.current_time_ms() < expires_at - buffer_ms

    def clear_tokens(self) -> None:
        for name in TOKEN_COOKIES:
            self.jar.remove(name)

    def get_all_token_data(self) -> TokenData | None:
        access_token = self.get_access_token()
        refresh_token = self.get_refresh_token()
        expires_at = self.get_token_expiry()
        if not access_token or not refresh_token or expires_at is None:
            return None

        return TokenData(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            token_type=self.get_token_type(),
            is_valid=self.is_token_valid(),
        )

    def _write_access_token(self, access_token: str, expires_in: int) -> None:
        expires_at = self.current_time_ms() + int(expires_in) * 1000
        self.jar.set(ACCESS_TOKEN_COOKIE, self._cipher.encrypt(access_token), expires_in)
        self.jar.set(TOKEN_EXPIRY_COOKIE, str(expires_at), expires_in)
        self.jar.set(TOKEN_TYPE_COOKIE, "Bearer", expires_in)

    def _read_secret(self, name: str) -> str | None:
        record = self.jar.get(name)
        if not record:
            return None
        try:
            return self._cipher.decrypt(record)
        except DecryptionError as error:
            AUTH_LOGGER.warning(
                "Failed to decrypt %s cookie (reason=%s): %s", name, error.reason, error
            )
            return None
