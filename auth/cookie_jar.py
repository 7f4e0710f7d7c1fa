from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from starlette.requests import Request
from starlette.responses import Response


@dataclass(frozen=True)
class CookiePolicy:
    secure: bool = False
    samesite: str = "lax"
    domain: str | None = None
    path: str = "/"
    httponly: bool = True


class CookieJar(ABC):
    @abstractmethod
    def get(self, name: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, name: str, value: str, max_age_seconds: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, name: str) -> None:
        raise NotImplementedError


class MemoryCookieJar(CookieJar):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})
        self.max_ages: dict[str, int] = {}

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def set(self, name: str, value: str, max_age_seconds: int) -> None:
        self.values[name] = value
        self.max_ages[name] = max_age_seconds

    def remove(self, name: str) -> None:
        self.values.pop(name, None)
        self.max_ages.pop(name, None)


class RequestCookieJar(CookieJar):
    """Reads cookies from a Starlette request and replays writes onto a response.

    Writes are visible to later reads in the same request, so a handler that
    refreshes a token and then reads it back sees the new value. Cookies named
    in ``overrides`` are written with their own policy instead of ``policy``.
    """

    _REMOVED = object()

    def __init__(
        self,
        request: Request,
        policy: CookiePolicy | None = None,
        overrides: dict[str, CookiePolicy] | None = None,
    ) -> None:
        self._cookies = dict(request.cookies)
        self._policy = policy or CookiePolicy()
        self._overrides = dict(overrides or {})
        self._pending: dict[str, tuple[object, int]] = {}

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def get(self, name: str) -> str | None:
        if name in self._pending:
            value, _ = self._pending[name]
            return None if value is self._REMOVED else value  # type: ignore[return-value]
        return self._cookies.get(name)

    def set(self, name: str, value: str, max_age_seconds: int) -> None:
        self._pending[name] = (value, max_age_seconds)

    def remove(self, name: str) -> None:
        self._pending[name] = (self._REMOVED, 0)

    def apply(self, response: Response) -> Response:
        for name, (value, max_age) in self._pending.items():
            policy = self._overrides.get(name, self._policy)
            if value is self._REMOVED:
                response.delete_cookie(
                    name,
                    path=policy.path,
                    domain=policy.domain,
                    secure=policy.secure,
                    httponly=policy.httponly,
                    samesite=policy.samesite,
                )
                continue
            response.set_cookie(
                name,
                str(value),
                max_age=max_age,
                path=policy.path,
                domain=policy.domain,
                secure=policy.secure,
                httponly=policy.httponly,
                samesite=policy.samesite,
            )
        return response
