"""Pesapal v3 gateway connector."""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from pesaflow_core.constants import GatewayURLs, Timeouts
from pesaflow_core.exceptions import (
    GatewayTokenRejectedError,
    MalformedGatewayResponseError,
    PesaflowAuthenticationError,
    PesaflowGatewayError,
)
from pesaflow_core.logging import mask_sensitive_data

from pesaflow_checkout.connectors.base import GatewayConnector
from pesaflow_checkout.models import AuthToken, GatewaySubmission, Order
from pesaflow_checkout.validation import normalize_phone

logger = logging.getLogger(__name__)

# Pesapal sends up to seven fractional digits, more than datetime accepts
_EXPIRY_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d{2}:?\d{2})?$"
)


def parse_expiry(value: Any) -> Optional[datetime]:
    """Parse Pesapal's `expiryDate`. Naive timestamps are taken as UTC."""
    if not isinstance(value, str):
        return None
    match = _EXPIRY_PATTERN.match(value.strip())
    if not match:
        return None
    text = match["base"]
    if match["frac"]:
        text += "." + match["frac"][:6].ljust(6, "0")
    tz = match["tz"]
    if tz and tz != "Z":
        text += tz if ":" in tz else f"{tz[:3]}:{tz[3:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_amount(amount: Decimal):
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _gateway_error_message(data: Dict[str, Any]) -> Optional[str]:
    """Pesapal reports failures inside a 200 body as `{"error": {...}, "status": "500"}`."""
    error = data.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or error.get("error_type") or "unknown error"
    return str(error)


def _is_token_error(data: Dict[str, Any]) -> bool:
    error = data.get("error")
    if not isinstance(error, dict):
        return False
    code = str(error.get("code") or "").lower()
    return "token" in code


class PesapalConnector(GatewayConnector):
    """Pesapal v3 REST connector.

    Orders are submitted with `id = order_id`; Pesapal treats that as the
    merchant reference, so resubmitting an order after a timeout does not
    create a second payment.
    """

    def __init__(
        self,
        base_url: str = GatewayURLs.SANDBOX,
        timeout: float = Timeouts.GATEWAY_DEFAULT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, Timeouts.GATEWAY_CONNECT)),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            transport=transport,
        )

    @property
    def gateway_name(self) -> str:
        return "pesapal"

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        token: Optional[AuthToken] = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {token.value}"} if token else None
        logger.debug(
            "Gateway request",
            extra={"path": path, "payload": mask_sensitive_data(payload)},
        )

        try:
            response = await self._client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise PesaflowGatewayError(
                "Gateway request timed out",
                retryable=True,
                details={"path": path},
            ) from e
        except httpx.TransportError as e:
            raise PesaflowGatewayError(
                "Could not reach the gateway",
                retryable=True,
                details={"path": path},
            ) from e

        if response.status_code == 401:
            raise GatewayTokenRejectedError()
        if response.status_code >= 500:
            raise PesaflowGatewayError(
                "Gateway unavailable",
                status_code=response.status_code,
                retryable=True,
                details={"path": path},
            )
        if response.status_code >= 400:
            raise PesaflowGatewayError(
                "Gateway rejected the request",
                status_code=response.status_code,
                details={"path": path},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedGatewayResponseError(
                "Gateway returned a non-JSON body",
                details={"path": path},
            ) from e
        if not isinstance(data, dict):
            raise MalformedGatewayResponseError(
                "Gateway returned an unexpected body",
                details={"path": path},
            )

        logger.debug(
            "Gateway response",
            extra={"path": path, "payload": mask_sensitive_data(data)},
        )
        return data

    async def request_token(
        self,
        consumer_key: str,
        consumer_secret: str,
    ) -> AuthToken:
        """Exchange consumer credentials at /Auth/RequestToken."""
        try:
            data = await self._post(
                GatewayURLs.REQUEST_TOKEN,
                {"consumer_key": consumer_key, "consumer_secret": consumer_secret},
            )
        except PesaflowGatewayError as e:
            raise PesaflowAuthenticationError(
                "Failed to authenticate with the payment gateway",
                details={"cause": e.error_code},
            ) from e

        error_message = _gateway_error_message(data)
        if error_message:
            raise PesaflowAuthenticationError(
                "Gateway refused the credential exchange",
                details={"cause": "GATEWAY_REPORTED"},
            )

        value = data.get("token")
        if not value or not isinstance(value, str):
            raise PesaflowAuthenticationError(
                "Gateway returned no token",
                details={"cause": "MALFORMED_GATEWAY_RESPONSE"},
            )

        expires_at = parse_expiry(data.get("expiryDate"))
        if expires_at is None:
            return AuthToken.with_default_lifetime(value)
        return AuthToken(value=value, expires_at=expires_at)

    async def register_ipn(
        self,
        token: AuthToken,
        url: str,
        notification_type: str = "GET",
    ) -> str:
        """Register a notification URL at /URLSetup/RegisterIPN."""
        data = await self._post(
            GatewayURLs.REGISTER_IPN,
            {"url": url, "ipn_notification_type": notification_type},
            token=token,
        )
        if _is_token_error(data):
            raise GatewayTokenRejectedError()

        error_message = _gateway_error_message(data)
        if error_message:
            raise PesaflowGatewayError(
                "Gateway refused the IPN registration",
                details={"gateway_message": error_message},
            )

        ipn_id = data.get("ipn_id")
        if not ipn_id:
            raise MalformedGatewayResponseError("Gateway returned no ipn_id")
        return str(ipn_id)

    def build_order_payload(
        self,
        order: Order,
        callback_url: str,
        notification_id: str,
    ) -> Dict[str, Any]:
        return {
            "id": order.order_id,
            "currency": order.currency,
            "amount": _json_amount(order.amount),
            "description": order.description,
            "callback_url": callback_url,
            "notification_id": notification_id,
            "billing_address": {
                "email_address": order.payer_email,
                "phone_number": normalize_phone(order.payer_phone),
            },
        }

    async def submit_order(
        self,
        token: AuthToken,
        order: Order,
        callback_url: str,
        notification_id: str,
    ) -> GatewaySubmission:
        """Submit at /Transactions/SubmitOrderRequest."""
        data = await self._post(
            GatewayURLs.SUBMIT_ORDER,
            self.build_order_payload(order, callback_url, notification_id),
            token=token,
        )
        if _is_token_error(data):
            raise GatewayTokenRejectedError()

        error_message = _gateway_error_message(data)
        if error_message:
            raise PesaflowGatewayError(
                "Gateway refused the order",
                details={"gateway_message": error_message},
            )

        tracking_id = data.get("order_tracking_id")
        redirect_url = data.get("redirect_url")
        if not tracking_id or not redirect_url:
            raise MalformedGatewayResponseError(
                "Gateway response lacks a tracking id or redirect URL",
                details={
                    "has_tracking_id": bool(tracking_id),
                    "has_redirect_url": bool(redirect_url),
                },
            )

        return GatewaySubmission(
            tracking_id=str(tracking_id),
            redirect_url=str(redirect_url),
            merchant_reference=data.get("merchant_reference"),
        )
