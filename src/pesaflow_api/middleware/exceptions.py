"""Exception handlers for the pesaflow API.

Errors are rendered as RFC 7807 Problem Details:
{
    "type": "https://pesaflow.dev/errors/<error-type>",
    "title": "Human-readable error title",
    "status": 400,
    "detail": "Detailed error description",
    "instance": "/api/initiate-payment",
    "request_id": "req_abc123",
    ... additional fields
}

Server-side failures (5xx) always carry a generic detail. What the gateway
said stays in the logs and never reaches the storefront.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pesaflow_core.exceptions import (
    PesaflowAuthenticationError,
    PesaflowException,
    PesaflowGatewayError,
)

logger = logging.getLogger(__name__)

ERROR_TYPE_BASE = "https://pesaflow.dev/errors"


@dataclass
class RFC7807Error:
    """RFC 7807 Problem Details representation."""
    type: str
    title: str
    status: int
    detail: str
    instance: str
    request_id: str
    extensions: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
            "instance": self.instance,
            "request_id": self.request_id,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        if self.extensions:
            result.update(self.extensions)
        return result


ERROR_TYPES = {
    "VALIDATION_ERROR": ("validation-error", "Validation Error"),
    "AUTHENTICATION_ERROR": ("payment-authentication-failed", "Payment Service Unavailable"),
    "GATEWAY_ERROR": ("payment-gateway-error", "Payment Gateway Error"),
    "NOT_FOUND": ("not-found", "Resource Not Found"),
    "ORDER_NOT_FOUND": ("not-found", "Resource Not Found"),
    "CONFLICT": ("conflict", "Resource Conflict"),
    "METHOD_NOT_ALLOWED": ("method-not-allowed", "Method Not Allowed"),
    "INTERNAL_ERROR": ("internal-error", "Internal Server Error"),
}

# Storefront-facing wording for server-side failures
GENERIC_MESSAGES = {
    "AUTHENTICATION_ERROR": "Payment service is temporarily unavailable",
    "GATEWAY_ERROR": "Payment gateway could not process the request, please try again",
    "INTERNAL_ERROR": "An internal error occurred",
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", "unknown")


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request_id: str,
    details: dict | None = None,
    instance: str = "",
) -> JSONResponse:
    """Create an RFC 7807 compliant error response."""
    type_info = ERROR_TYPES.get(
        error_code,
        (error_code.lower().replace("_", "-"), error_code.replace("_", " ").title()),
    )

    error = RFC7807Error(
        type=f"{ERROR_TYPE_BASE}/{type_info[0]}",
        title=type_info[1],
        status=status_code,
        detail=message,
        instance=instance,
        request_id=request_id,
        extensions=details,
    )

    return JSONResponse(
        status_code=status_code,
        content=error.to_dict(),
        media_type="application/problem+json",
        headers={"X-Request-ID": request_id},
    )


def _public_error_code(exc: PesaflowException) -> str:
    if isinstance(exc, PesaflowGatewayError):
        return "GATEWAY_ERROR"
    if isinstance(exc, PesaflowAuthenticationError):
        return "AUTHENTICATION_ERROR"
    return exc.error_code


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed or missing body fields are a 400, like any other validation failure."""
        request_id = get_request_id(request)

        errors = []
        for error in exc.errors():
            field_path = ".".join(str(loc) for loc in error["loc"] if loc != "body")
            errors.append({
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            })

        logger.warning(
            f"Validation error: {len(errors)} field(s) failed",
            extra={"path": request.url.path, "errors": errors},
        )

        return create_error_response(
            error_code="VALIDATION_ERROR",
            message="One or more fields failed validation",
            status_code=400,
            request_id=request_id,
            details={"errors": errors},
            instance=request.url.path,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        request_id = get_request_id(request)

        status_to_code = {
            400: "BAD_REQUEST",
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
            409: "CONFLICT",
        }
        error_code = status_to_code.get(exc.status_code, "INTERNAL_ERROR")

        logger.warning(
            f"HTTP error {exc.status_code}: {exc.detail}",
            extra={"path": request.url.path},
        )

        return create_error_response(
            error_code=error_code,
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            request_id=request_id,
            instance=request.url.path,
        )

    @app.exception_handler(PesaflowException)
    async def pesaflow_exception_handler(
        request: Request, exc: PesaflowException
    ) -> JSONResponse:
        """Handle all pesaflow exceptions with RFC 7807 format."""
        request_id = get_request_id(request)
        error_code = _public_error_code(exc)

        if exc.http_status >= 500:
            logger.error(
                f"Server error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code, "details": exc.details},
            )
            return create_error_response(
                error_code=error_code,
                message=GENERIC_MESSAGES.get(error_code, GENERIC_MESSAGES["INTERNAL_ERROR"]),
                status_code=exc.http_status,
                request_id=request_id,
                instance=request.url.path,
            )

        logger.warning(
            f"Client error: {exc.error_code} - {exc.message}",
            extra={"error_code": exc.error_code},
        )
        return create_error_response(
            error_code=error_code,
            message=exc.message,
            status_code=exc.http_status,
            request_id=request_id,
            details=exc.details or None,
            instance=request.url.path,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; the response never includes internals."""
        request_id = get_request_id(request)

        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={
                "exception_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            },
            exc_info=True,
        )

        return create_error_response(
            error_code="INTERNAL_ERROR",
            message=GENERIC_MESSAGES["INTERNAL_ERROR"],
            status_code=500,
            request_id=request_id,
            instance=request.url.path,
        )
