"""
Logging utilities with sensitive data masking.

Gateway payloads carry consumer secrets, bearer tokens and payer contact
details. Anything logged from them goes through `mask_sensitive_data` first.

Usage:
    from pesaflow_core.logging import mask_sensitive_data

    logger.debug("Submitting order", extra={"payload": mask_sensitive_data(payload)})
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

from .constants import LoggingConfig


def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, optionally showing first/last characters."""
    if not value or len(value) <= show_chars * 2:
        return LoggingConfig.MASK_PATTERN

    return f"{value[:show_chars]}...{value[-show_chars:]}"


def mask_contact(value: str) -> str:
    """Keep just enough of an email or phone number to correlate support tickets."""
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(value) > 4:
        return f"{'*' * (len(value) - 3)}{value[-3:]}"
    return LoggingConfig.MASK_PATTERN


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    return key_lower in LoggingConfig.SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "token", "credential", "auth")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    mask_pattern: str = LoggingConfig.MASK_PATTERN,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Returns a copy; the input is never modified.
    """
    if _depth > _max_depth:
        return data

    extra = {f.lower() for f in additional_fields or ()}

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_str = str(key)
            if is_sensitive_key(key_str) or key_str.lower() in extra:
                result[key] = mask_pattern
            elif key_str.lower() in LoggingConfig.CONTACT_FIELDS and isinstance(value, str):
                result[key] = mask_contact(value)
            else:
                result[key] = mask_sensitive_data(
                    value, additional_fields, mask_pattern, _depth + 1, _max_depth
                )
        return result

    if isinstance(data, (list, tuple)):
        masked = [
            mask_sensitive_data(item, additional_fields, mask_pattern, _depth + 1, _max_depth)
            for item in data
        ]
        return type(data)(masked)

    return data
