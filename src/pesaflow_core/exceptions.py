"""Unified exception hierarchy for pesaflow.

All pesaflow-specific exceptions inherit from PesaflowException, enabling:
- Consistent error handling across packages
- Proper HTTP status code mapping in the API layer
- Structured error responses with error codes

Usage:
    from pesaflow_core.exceptions import (
        PesaflowException,
        PesaflowValidationError,
        PesaflowGatewayError,
    )

    try:
        result = await submitter.submit(order)
    except PesaflowGatewayError as e:
        if e.retryable:
            ...

All exceptions have:
- error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional


class PesaflowException(Exception):
    """Base exception for all pesaflow errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        details: Optional additional context
    """

    error_code: str = "PESAFLOW_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation & Input Errors (4xx)
# =============================================================================

class PesaflowValidationError(PesaflowException):
    """Malformed or missing input. Never retried."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[list[dict[str, str]]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(message, details=details)
        self.errors = errors or []


class PesaflowConfigurationError(PesaflowException):
    """Required configuration is missing or inconsistent."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


# =============================================================================
# Gateway Errors
# =============================================================================

class PesaflowAuthenticationError(PesaflowException):
    """Credential exchange with the payment gateway failed."""

    error_code = "AUTHENTICATION_ERROR"
    http_status = 500


class PesaflowGatewayError(PesaflowException):
    """Non-authentication failure or timeout from the payment gateway.

    Safe to retry with the same order, since the order id is sent as the
    gateway's idempotency reference.
    """

    error_code = "GATEWAY_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.status_code = status_code
        self.retryable = retryable


class GatewayTokenRejectedError(PesaflowGatewayError):
    """The gateway rejected the bearer token (HTTP 401)."""

    error_code = "GATEWAY_TOKEN_REJECTED"

    def __init__(self, message: str = "Gateway rejected the bearer token") -> None:
        super().__init__(message, status_code=401, retryable=False)


class MalformedGatewayResponseError(PesaflowGatewayError):
    """The gateway answered 2xx but the body is missing required fields."""

    error_code = "MALFORMED_GATEWAY_RESPONSE"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message, retryable=False, details=details)


# =============================================================================
# Reconciliation Errors
# =============================================================================

class UnknownOrderError(PesaflowException):
    """A callback referenced an order this service never created."""

    error_code = "UNKNOWN_ORDER"
    http_status = 404

    def __init__(self, tracking_id: str) -> None:
        super().__init__(
            f"No order found for tracking id '{tracking_id}'",
            details={"tracking_id": tracking_id},
        )
        self.tracking_id = tracking_id


class OrderNotFoundError(PesaflowException):
    """No order is stored under the given order id."""

    error_code = "ORDER_NOT_FOUND"
    http_status = 404

    def __init__(self, order_id: str) -> None:
        super().__init__(
            f"Order '{order_id}' not found",
            details={"order_id": order_id},
        )
        self.order_id = order_id


class DuplicateOrderError(PesaflowException):
    """An order with the same order id already exists."""

    error_code = "DUPLICATE_ORDER"
    http_status = 409

    def __init__(self, order_id: str) -> None:
        super().__init__(
            f"Order '{order_id}' already exists",
            details={"order_id": order_id},
        )
        self.order_id = order_id


class StaleTransitionError(PesaflowException):
    """A transition was attempted against a version-mismatched or disallowed state."""

    error_code = "STALE_TRANSITION"
    http_status = 409

    def __init__(
        self,
        order_id: str,
        current_status: str,
        target_status: str,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"Order '{order_id}' cannot move from {current_status} to {target_status}",
            details={
                "order_id": order_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )
        self.order_id = order_id
        self.current_status = current_status
        self.target_status = target_status


class DuplicateCallbackError(StaleTransitionError):
    """A transition was attempted on an order that already reached a terminal status."""

    error_code = "DUPLICATE_CALLBACK"

    def __init__(self, order_id: str, current_status: str, target_status: str) -> None:
        super().__init__(
            order_id,
            current_status,
            target_status,
            message=f"Order '{order_id}' is already {current_status}",
        )
