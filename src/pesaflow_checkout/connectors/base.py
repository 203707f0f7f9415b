"""Base payment gateway connector interface."""
from __future__ import annotations

from abc import ABC, abstractmethod

from pesaflow_checkout.models import AuthToken, GatewaySubmission, Order


class GatewayConnector(ABC):
    """Abstract interface for payment gateway connectors."""

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        """Return the gateway name."""
        pass

    @abstractmethod
    async def request_token(
        self,
        consumer_key: str,
        consumer_secret: str,
    ) -> AuthToken:
        """
        Exchange consumer credentials for a bearer token.

        Raises:
            PesaflowAuthenticationError: on any failure of the exchange
        """
        pass

    @abstractmethod
    async def register_ipn(
        self,
        token: AuthToken,
        url: str,
        notification_type: str = "GET",
    ) -> str:
        """
        Register the URL the gateway notifies about payment outcomes.

        Returns:
            The notification id to send with every order
        """
        pass

    @abstractmethod
    async def submit_order(
        self,
        token: AuthToken,
        order: Order,
        callback_url: str,
        notification_id: str,
    ) -> GatewaySubmission:
        """
        Submit an order for payment.

        Args:
            token: Bearer token from the TokenManager
            order: Order to submit; its order_id is the idempotency reference
            callback_url: Where the gateway sends the payer afterwards
            notification_id: Registered notification id

        Raises:
            GatewayTokenRejectedError: the token was rejected (HTTP 401)
            MalformedGatewayResponseError: 2xx without tracking id or redirect URL
            PesaflowGatewayError: any other failure; `retryable` marks
                timeouts, connection errors and 5xx responses
        """
        pass

    async def close(self) -> None:
        """Release HTTP resources."""
        return None
