from __future__ import annotations


class ConfigError(RuntimeError):
    """Missing or malformed startup configuration. Never recovered from."""


class DecryptionError(ValueError):
    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class AuthError(RuntimeError):
    """No usable access token can be produced; the user has to log in again."""

    action = "reauthenticate"


class NoRefreshTokenError(AuthError):
    def __init__(self, message: str = "No refresh token available.") -> None:
        super().__init__(message)


class RefreshTerminalError(AuthError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        spotify_error: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.spotify_error = spotify_error or {}


class RefreshFailedError(AuthError):
    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class RefreshTransientError(RuntimeError):
    pass
