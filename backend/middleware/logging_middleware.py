"""
Request Logging Middleware

Every API call runs inside a LogContext carrying its request and
correlation ids, so log lines written by routers and services can be tied
back to the request. The ids and the handling time are returned as
X-Request-ID, X-Correlation-ID and X-Process-Time.

Request bodies are never read here; MRI uploads are logged by declared
size and content type only.
"""

import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from config import DEBUG
from structured_logging import get_logger, LogContext, log_request, generate_request_id

logger = get_logger("api.middleware")

# Not worth a log line per hit
QUIET_PATHS = {"/health", "/favicon.ico", "/docs", "/redoc", "/openapi.json"}
QUIET_PREFIXES = ("/uploads/",)

HIDDEN_HEADERS = {"authorization", "cookie", "x-api-key"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    def __init__(self, app: ASGIApp, log_headers: bool = False):
        super().__init__(app)
        self.log_headers = log_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        correlation_id = request.headers.get("X-Correlation-ID") or request_id
        path = request.url.path

        if path in QUIET_PATHS or path.startswith(QUIET_PREFIXES):
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        client_ip = _client_ip(request)
        with LogContext(request_id=request_id, correlation_id=correlation_id):
            started = time.perf_counter()
            self._log_start(request, client_ip)

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "Request failed with exception",
                    extra={
                        "http_method": request.method,
                        "http_path": path,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                raise

            duration_ms = (time.perf_counter() - started) * 1000
            log_request(
                request.method,
                path,
                response.status_code,
                duration_ms,
                client_ip=client_ip,
                response_bytes=_int_header(response.headers.get("content-length")),
            )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Correlation-ID"] = correlation_id
            response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"
            return response

    def _log_start(self, request: Request, client_ip: str):
        data = {
            "http_method": request.method,
            "http_path": request.url.path,
            "client_ip": client_ip,
            "query_params": str(request.query_params) or None,
            "content_type": request.headers.get("content-type"),
            "request_bytes": _int_header(request.headers.get("content-length")),
        }
        if self.log_headers and DEBUG:
            data["headers"] = {
                k: v for k, v in request.headers.items() if k.lower() not in HIDDEN_HEADERS
            }
        logger.info("Incoming request", extra=data)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _int_header(value: Optional[str]) -> Optional[int]:
    return int(value) if value and value.isdigit() else None
