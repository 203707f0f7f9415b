"""Read-only gateway credentials."""
from __future__ import annotations

from dataclasses import dataclass

from pesaflow_core.config import PesaflowSettings
from pesaflow_core.exceptions import PesaflowConfigurationError
from pesaflow_core.logging import mask_value


@dataclass(frozen=True)
class GatewayCredentials:
    """Consumer key/secret, public callback URL and notification id.

    Built once at startup and never mutated.
    """
    consumer_key: str
    consumer_secret: str
    callback_url: str
    notification_id: str

    def __post_init__(self) -> None:
        missing = [
            name
            for name in ("consumer_key", "consumer_secret", "callback_url", "notification_id")
            if not getattr(self, name)
        ]
        if missing:
            raise PesaflowConfigurationError(
                f"Missing gateway credentials: {', '.join(missing)}",
                details={"missing": missing},
            )

    @classmethod
    def from_settings(cls, settings: PesaflowSettings) -> "GatewayCredentials":
        return cls(
            consumer_key=settings.consumer_key,
            consumer_secret=settings.consumer_secret,
            callback_url=settings.callback_url,
            notification_id=settings.ipn_id,
        )

    def __repr__(self) -> str:
        return (
            f"GatewayCredentials(consumer_key='{mask_value(self.consumer_key)}', "
            f"consumer_secret='***', callback_url='{self.callback_url}', "
            f"notification_id='{self.notification_id}')"
        )
