"""API middleware components."""

from .exceptions import register_exception_handlers
from .logging import RequestLoggingConfig, StructuredLoggingMiddleware

__all__ = [
    "register_exception_handlers",
    "RequestLoggingConfig",
    "StructuredLoggingMiddleware",
]
