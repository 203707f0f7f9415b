"""Structured request logging with correlation IDs.

Every request gets an `X-Request-ID` (taken from the caller when present),
which is bound to the logging context and echoed on the response so the
initiate call and the later gateway callback can be traced in the logs.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, List

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from pesaflow_core.logging_config import request_id_var

logger = logging.getLogger("pesaflow.api")

# Query parameters that should be masked
SENSITIVE_PARAMS = frozenset({
    "token",
    "access_token",
    "api_key",
    "secret",
    "consumer_secret",
    "password",
})


@dataclass
class RequestLoggingConfig:
    """Configuration for the request logging middleware."""

    # Paths to exclude from logging entirely
    exclude_paths: List[str] = field(default_factory=lambda: ["/health"])

    # Slow request threshold (ms); logs a warning if exceeded
    slow_request_threshold_ms: float = 5000.0


def filter_query_params(query_string: str) -> str:
    """Mask sensitive query parameters for logging."""
    if not query_string:
        return ""

    params = []
    for param in query_string.split("&"):
        key, sep, _ = param.partition("=")
        if sep and key.lower() in SENSITIVE_PARAMS:
            params.append(f"{key}=***")
        else:
            params.append(param)
    return "&".join(params)


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs request start and completion with timing.

    - Accepts X-Request-ID from the caller or generates one
    - Adds X-Request-ID to the response headers
    - Masks sensitive query parameters
    """

    def __init__(self, app, config: RequestLoggingConfig | None = None):
        super().__init__(app)
        self.config = config or RequestLoggingConfig()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.config.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        token = request_id_var.set(request_id)
        request.state.request_id = request_id

        method = request.method
        path = request.url.path
        query = filter_query_params(request.url.query)

        request_context = {
            "event": "request_start",
            "method": method,
            "path": path,
            "query": query or None,
            "client_ip": request.client.host if request.client else None,
        }
        logger.info(
            "Request started",
            extra={k: v for k, v in request_context.items() if v is not None},
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "Request failed with unhandled exception",
                extra={
                    "event": "request_error",
                    "method": method,
                    "path": path,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise
        finally:
            request_id_var.reset(token)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response_context = {
            "event": "request_complete",
            "request_id": request_id,
            "method": method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }

        if response.status_code >= 500:
            logger.error("Request completed with server error", extra=response_context)
        elif response.status_code >= 400:
            logger.warning("Request completed with client error", extra=response_context)
        elif duration_ms > self.config.slow_request_threshold_ms:
            response_context["slow_request"] = True
            logger.warning("Slow request completed", extra=response_context)
        else:
            logger.info("Request completed", extra=response_context)

        response.headers["X-Request-ID"] = request_id
        return response
