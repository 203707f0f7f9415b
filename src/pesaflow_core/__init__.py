"""Pesaflow core: configuration, errors, logging and retry helpers shared by all packages."""

from .config import PesaflowSettings, load_settings
from .exceptions import (
    DuplicateCallbackError,
    DuplicateOrderError,
    GatewayTokenRejectedError,
    MalformedGatewayResponseError,
    OrderNotFoundError,
    PesaflowAuthenticationError,
    PesaflowConfigurationError,
    PesaflowException,
    PesaflowGatewayError,
    PesaflowValidationError,
    StaleTransitionError,
    UnknownOrderError,
)
from .logging import mask_sensitive_data
from .logging_config import setup_logging
from .retry import RetryConfig, retry_async

__all__ = [
    "PesaflowSettings",
    "load_settings",
    "PesaflowException",
    "PesaflowValidationError",
    "PesaflowConfigurationError",
    "PesaflowAuthenticationError",
    "PesaflowGatewayError",
    "GatewayTokenRejectedError",
    "MalformedGatewayResponseError",
    "UnknownOrderError",
    "OrderNotFoundError",
    "DuplicateOrderError",
    "StaleTransitionError",
    "DuplicateCallbackError",
    "mask_sensitive_data",
    "setup_logging",
    "RetryConfig",
    "retry_async",
]
