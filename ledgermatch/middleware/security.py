"""
Security Middleware.

Per-client rate limiting for the expensive endpoints (uploads, matching
runs, data deletion) and security headers on every response.
"""
import logging
from typing import Callable

from asgi_correlation_id import correlation_id
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ledgermatch.config.settings import settings
from ledgermatch.exceptions.handlers import error_response

logger = logging.getLogger("ledgermatch.middleware.security")


# =============================================================================
# Rate limiting
# =============================================================================

def get_client_ip(request: Request) -> str:
    """Client address, taken from the first X-Forwarded-For hop behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Parsing and matching hold a worker for a while; deletion is destructive
RATE_LIMITS = {
    "upload": settings.RATE_LIMIT_UPLOAD,
    "reconcile": settings.RATE_LIMIT_RECONCILE,
    "test_data": settings.RATE_LIMIT_DELETION,
}


def _retry_after_seconds(exc: RateLimitExceeded) -> int:
    return int(exc.limit.limit.get_expiry())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """429 in the standard error envelope, with Retry-After set to the limit window."""
    retry_after = _retry_after_seconds(exc)
    logger.warning(
        "Rate limit exceeded",
        extra={
            "client_ip": get_client_ip(request),
            "path": request.url.path,
            "method": request.method,
            "limit": str(exc.detail),
            "retry_after": retry_after,
        }
    )

    return error_response(
        429, "TooManyRequests", "RATE_LIMITED",
        f"Too many requests ({exc.detail}). Retry in {retry_after} seconds.",
        correlation_id.get() or "",
        details={"retry_after": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


# =============================================================================
# Security headers
# =============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to every response.

    API responses carry ledger data, so they are never cached and get a CSP
    that allows nothing. The interactive docs get a CSP that lets Swagger UI
    and ReDoc load their assets.
    """

    _DOCS_PATHS = {"/docs", "/redoc", "/openapi.json"}

    _BASE_HEADERS = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    }

    _API_CSP = "default-src 'none'; frame-ancestors 'none'"

    _DOCS_CSP = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "img-src 'self' data: https://cdn.jsdelivr.net https://fastapi.tiangolo.com; "
        "frame-ancestors 'none'"
    )

    HSTS_HEADER = "max-age=31536000; includeSubDomains"

    @staticmethod
    def _is_https(request: Request) -> bool:
        return request.url.scheme == "https" or request.headers.get("X-Forwarded-Proto") == "https"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self._BASE_HEADERS)

        if request.url.path in self._DOCS_PATHS:
            response.headers["Content-Security-Policy"] = self._DOCS_CSP
        else:
            response.headers["Content-Security-Policy"] = self._API_CSP
            response.headers["Cache-Control"] = "no-store"

        if self._is_https(request):
            response.headers["Strict-Transport-Security"] = self.HSTS_HEADER

        if "Server" in response.headers:
            del response.headers["Server"]

        return response
