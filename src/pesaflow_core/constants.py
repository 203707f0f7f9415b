"""
Centralized constants and configuration defaults for pesaflow.

Usage:
    from pesaflow_core.constants import Timeouts, Limits, RetryDefaults

All values are organized into logical namespaces using classes.
"""
from __future__ import annotations

from typing import Final


# =============================================================================
# Timeout Constants (in seconds unless specified)
# =============================================================================

class Timeouts:
    """Network and operation timeout configuration."""

    # Outbound gateway calls
    GATEWAY_DEFAULT: Final[float] = 30.0
    GATEWAY_CONNECT: Final[float] = 10.0

    # Pesapal tokens are documented to live five minutes
    GATEWAY_TOKEN_LIFETIME: Final[float] = 300.0

    # Token must have at least this much lifetime left to be reused
    TOKEN_SAFETY_MARGIN: Final[float] = 60.0

    # Orders still waiting for an IPN after this many minutes are presumed failed
    CALLBACK_WINDOW_MINUTES: Final[int] = 30

    EXPIRY_SWEEP_INTERVAL: Final[int] = 60


# =============================================================================
# Limits
# =============================================================================

class Limits:
    """Input limits enforced when building orders."""

    MAX_DESCRIPTION_LENGTH: Final[int] = 100
    MAX_AMOUNT_DECIMALS: Final[int] = 2
    # Largest order amount, in major currency units
    MAX_AMOUNT: Final[int] = 10**12
    ORDER_ID_RANDOM_CHARS: Final[int] = 9

    # Bounded retries when a reconciliation loses a race to a non-terminal step
    RECONCILE_MAX_ATTEMPTS: Final[int] = 3


# =============================================================================
# Retry Constants
# =============================================================================

class RetryDefaults:
    """Retry configuration for gateway operations."""

    DEFAULT_MAX_RETRIES: Final[int] = 3
    DEFAULT_BASE_DELAY: Final[float] = 1.0
    DEFAULT_MAX_DELAY: Final[float] = 30.0
    DEFAULT_EXPONENTIAL_BASE: Final[float] = 2.0
    DEFAULT_JITTER: Final[float] = 0.1

    # Order submission retries at the HTTP boundary
    SUBMIT_MAX_RETRIES: Final[int] = 2
    SUBMIT_BASE_DELAY: Final[float] = 0.5
    SUBMIT_MAX_DELAY: Final[float] = 4.0


# =============================================================================
# Logging Constants
# =============================================================================

class LoggingConfig:
    """Logging-related constants."""

    # Sensitive fields to mask in logs
    SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset({
        "password",
        "secret",
        "token",
        "consumer_key",
        "consumer_secret",
        "api_key",
        "access_token",
        "authorization",
        "auth",
        "credential",
        "credentials",
    })

    MASK_PATTERN: Final[str] = "***MASKED***"

    # Fields holding payer contact identity, partially masked
    CONTACT_FIELDS: Final[frozenset[str]] = frozenset({
        "email",
        "email_address",
        "payer_email",
        "phone",
        "phone_number",
        "payer_phone",
    })


# =============================================================================
# Gateway endpoints
# =============================================================================

class GatewayURLs:
    """Pesapal v3 base URLs and relative paths."""

    PRODUCTION: Final[str] = "https://pay.pesapal.com/v3/api"
    SANDBOX: Final[str] = "https://demo.pesapal.com/api"

    REQUEST_TOKEN: Final[str] = "/Auth/RequestToken"
    REGISTER_IPN: Final[str] = "/URLSetup/RegisterIPN"
    SUBMIT_ORDER: Final[str] = "/Transactions/SubmitOrderRequest"
