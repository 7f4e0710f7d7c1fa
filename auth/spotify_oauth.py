from __future__ import annotations

import base64
import hashlib
import secrets
import time
import urllib.parse
from dataclasses import dataclass

import httpx

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

# RFC 7636 unreserved characters.
VERIFIER_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
VERIFIER_LENGTH = 64


class TokenRequestError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error or {}

    @property
    def error_code(self) -> str | None:
        code = self.error.get("error")
        return code if isinstance(code, str) else None


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    expires_at: float
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str = ""

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        token_type = payload.get("token_type", "Bearer")
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise TokenRequestError("Token response missing access_token.")
        if refresh_token is not None and (not isinstance(refresh_token, str) or not refresh_token):
            raise TokenRequestError("Token response refresh_token must be a non-empty string.")
        if not isinstance(expires_in, int) or isinstance(expires_in, bool) or expires_in <= 0:
            raise TokenRequestError("Token response missing expires_in.")
        if not isinstance(scope, str):
            raise TokenRequestError("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            expires_at=time.time() + expires_in,
            token_type=token_type if isinstance(token_type, str) else "Bearer",
            scope=scope,
        )


def generate_code_verifier(length: int = VERIFIER_LENGTH) -> str:
    if not 43 <= length <= 128:
        raise ValueError("PKCE code verifier length must be between 43 and 128.")
    return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(24)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str] | tuple[str, ...],
    code_challenge: str,
    state: str | None = None,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "scope": " ".join(scopes),
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
        "redirect_uri": redirect_uri,
    }
    if state:
        query["state"] = state
    return f"{SPOTIFY_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def _error_payload(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text}
    if isinstance(payload, dict):
        return payload
    return {"message": response.text}


async def _token_request(
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            SPOTIFY_TOKEN_URL,
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    finally:
        if own_client:
            await http_client.aclose()

    if response.is_error:
        raise TokenRequestError(
            f"Token request failed with status {response.status_code}: {response.text}",
            status_code=response.status_code,
            error=_error_payload(response),
        )

    try:
        body = response.json()
    except ValueError as error:
        raise TokenRequestError(
            "Token endpoint returned invalid JSON.", status_code=response.status_code
        ) from error
    if not isinstance(body, dict):
        raise TokenRequestError("Token endpoint returned an unexpected payload.")

    return TokenResponse.from_payload(body)


async def exchange_code(
    client_id: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
            "code_verifier": code_verifier,
        },
        client=client,
    )


async def refresh_token(
    client_id: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        },
        client=client,
    )
