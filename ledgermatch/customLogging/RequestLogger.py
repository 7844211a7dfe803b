import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger("ledgermatch.request")

# Polled by load balancers and browsers; not worth a log line each
_QUIET_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        context = {
            "path": request.url.path,
            "method": request.method,
        }
        # Upload size as announced by the client
        content_length = request.headers.get("content-length", "")
        if content_length.isdigit():
            context["content_length"] = int(content_length)

        logger.info(
            f"REQUEST: {request.method} {request.url.path} Query={dict(request.query_params)}",
            extra=context,
        )

        response: Response = await call_next(request)

        duration = round(time.perf_counter() - start_time, 4)
        level = logging.INFO if response.status_code < 500 else logging.ERROR
        logger.log(
            level,
            f"RESPONSE: {request.method} {request.url.path} "
            f"Status={response.status_code} Duration={duration}s",
            extra={**context, "status_code": response.status_code, "duration_s": duration},
        )

        return response
