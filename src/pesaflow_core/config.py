"""Canonical configuration surface for pesaflow services."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import GatewayURLs, RetryDefaults, Timeouts


class PesaflowSettings(BaseSettings):
    """Main pesaflow configuration.

    The gateway credentials, the public callback URL and the pre-registered
    notification id have no defaults: the service refuses to start without them.
    """

    model_config = SettingsConfigDict(
        env_prefix="PESAFLOW_",
        env_file=".env",
        extra="ignore",
    )

    # Gateway environment selector
    environment: Literal["sandbox", "production"] = "sandbox"
    api_base_url: Optional[str] = None

    # Credential store
    consumer_key: str
    consumer_secret: str
    callback_url: str
    ipn_id: str

    # HTTP listener
    port: int = 5000
    allowed_origins: str = "http://localhost:3000"

    # Payer-facing destinations after a callback
    success_redirect_url: str = "http://localhost:3000/payment-success"
    failure_redirect_url: str = "http://localhost:3000/payment-failed"

    # Gateway behaviour
    gateway_timeout_seconds: float = Timeouts.GATEWAY_DEFAULT
    token_safety_margin_seconds: float = Timeouts.TOKEN_SAFETY_MARGIN
    submit_max_retries: int = RetryDefaults.SUBMIT_MAX_RETRIES

    # Reconciliation
    callback_timeout_minutes: int = Timeouts.CALLBACK_WINDOW_MINUTES
    expiry_sweep_interval_seconds: int = Timeouts.EXPIRY_SWEEP_INTERVAL
    enable_expiry_sweep: bool = True

    # Order store; empty means in-memory
    database_url: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: Optional[bool] = None

    @field_validator("consumer_key", "consumer_secret", "callback_url", "ipn_id")
    @classmethod
    def require_non_blank(cls, v: str, info) -> str:
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return v.strip()

    @field_validator("callback_url", "success_redirect_url", "failure_redirect_url")
    @classmethod
    def require_http_url(cls, v: str, info) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"{info.field_name} must be an absolute http(s) URL")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def gateway_base_url(self) -> str:
        """Resolve the gateway API base URL for the selected environment."""
        if self.api_base_url:
            return self.api_base_url.rstrip("/")
        if self.environment == "production":
            return GatewayURLs.PRODUCTION
        return GatewayURLs.SANDBOX

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def use_postgres(self) -> bool:
        return self.database_url.startswith(("postgresql://", "postgres://"))

    @property
    def json_logs(self) -> bool:
        """JSON logs by default outside the sandbox."""
        if self.log_json is not None:
            return self.log_json
        return self.environment == "production"


# Names a .env file for processes started without CLI arguments (uvicorn reload workers)
ENV_FILE_VARIABLE = "PESAFLOW_ENV_FILE"


@lru_cache
def load_settings(env_file: str | None = None) -> PesaflowSettings:
    """Load PesaflowSettings once per process to keep services consistent.

    Without an explicit `env_file`, the file named by PESAFLOW_ENV_FILE is used.
    """
    env_file = env_file or os.environ.get(ENV_FILE_VARIABLE)
    if env_file:
        return PesaflowSettings(_env_file=Path(env_file))
    return PesaflowSettings()
