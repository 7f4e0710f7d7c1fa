from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
HSTS_HEADER = "max-age=31536000; includeSubDomains"


def _is_allowed_origin(origin: str | None, allowed_origins: set[str] | frozenset[str]) -> bool:
    return bool(origin and origin in allowed_origins)


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: set[str] | frozenset[str],
) -> Response:
    origin = request.headers.get("origin")
    if _is_allowed_origin(origin, allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        response.headers["Vary"] = "Origin"
    return response


def apply_security_headers(response: Response, *, production: bool) -> Response:
    if not production:
        return response
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    response.headers["Strict-Transport-Security"] = HSTS_HEADER
    return response


def cors_preflight_response(
    request: Request, allowed_origins: set[str] | frozenset[str]
) -> Response:
    return apply_cors_response(request, Response(status_code=204), allowed_origins)


def cors_error_response(
    request: Request,
    allowed_origins: set[str] | frozenset[str],
    code: str,
    description: str,
    status_code: int,
    **extra,
) -> Response:
    return apply_cors_response(
        request,
        JSONResponse(
            {"error": code, "error_description": description, **extra},
            status_code=status_code,
        ),
        allowed_origins,
    )
