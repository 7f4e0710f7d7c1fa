from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from auth.cookie_jar import CookiePolicy, RequestCookieJar
from auth.cors import apply_cors_response, apply_security_headers, cors_error_response
from auth.crypto import TokenCipher
from auth.token_store import SecureTokenStore


@dataclass
class Session:
    jar: RequestCookieJar
    store: SecureTokenStore

    def has_credentials(self) -> bool:
        """True when a request can obtain a token, possibly through a refresh."""
        return self.store.is_token_valid() or self.store.get_refresh_token() is not None


class SessionFactory:
    """Binds a request's cookies to a token store and finishes its response."""

    def __init__(
        self,
        cipher: TokenCipher,
        *,
        cookie_policy: CookiePolicy | None = None,
        cookie_overrides: dict[str, CookiePolicy] | None = None,
        cors_origins: set[str] | frozenset[str] | None = None,
        production: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cipher = cipher
        self.cookie_policy = cookie_policy or CookiePolicy()
        self.cookie_overrides = dict(cookie_overrides or {})
        self.cors_origins = frozenset(cors_origins or ())
        self.production = production
        self._clock = clock

    def open(self, request: Request) -> Session:
        jar = RequestCookieJar(request, self.cookie_policy, self.cookie_overrides)
        return Session(jar=jar, store=SecureTokenStore(jar, self.cipher, clock=self._clock))

    def respond(self, request: Request, session: Session | None, response: Response) -> Response:
        if session is not None:
            session.jar.apply(response)
        apply_security_headers(response, production=self.production)
        return apply_cors_response(request, response, self.cors_origins)

    def json(
        self,
        request: Request,
        session: Session | None,
        payload,
        status_code: int = 200,
    ) -> Response:
        return self.respond(request, session, JSONResponse(payload, status_code=status_code))

    def error(
        self,
        request: Request,
        session: Session | None,
        code: str,
        description: str,
        status_code: int,
        **extra,
    ) -> Response:
        response = cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=code,
            description=description,
            status_code=status_code,
            **extra,
        )
        if session is not None:
            session.jar.apply(response)
        return apply_security_headers(response, production=self.production)
