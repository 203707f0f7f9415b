"""Checkout routes: payment initiation and the gateway's payer callback."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from pesaflow_checkout.models import DEFAULT_CURRENCY, OrderRequest
from pesaflow_checkout.orchestrator import CheckoutOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


# Request/Response Models

class InitiatePaymentRequest(BaseModel):
    """Purchase request from the storefront."""
    model_config = ConfigDict(populate_by_name=True)

    # Range checks happen on the order so a rejected amount is still recorded
    amount: Decimal = Field(..., description="Amount in major currency units")
    currency: str = Field(default=DEFAULT_CURRENCY, description="ISO currency code")
    description: Optional[str] = Field(None, description="Label shown on the payment page")
    email: str = Field(..., validation_alias=AliasChoices("email", "email_address"))
    phone: str = Field(..., validation_alias=AliasChoices("phone", "phone_number"))
    package_name: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("packageName", "package_name"),
        description="Catalogue package or add-on being bought",
    )

    def to_order_request(self) -> OrderRequest:
        return OrderRequest(
            amount=self.amount,
            email=self.email,
            phone=self.phone,
            currency=self.currency,
            description=self.description,
            item_label=self.package_name,
        )


class InitiatePaymentResponse(BaseModel):
    """Where to send the payer to complete the payment."""
    order_id: str
    order_tracking_id: str
    redirect_url: str
    iframeUrl: str


# Dependencies

class PaymentsDependencies:
    """Dependencies for payment routes."""
    def __init__(self, orchestrator: CheckoutOrchestrator):
        self.orchestrator = orchestrator


def get_deps() -> PaymentsDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


# Routes

@router.post("/api/initiate-payment", response_model=InitiatePaymentResponse)
async def initiate_payment(
    request: InitiatePaymentRequest,
    deps: PaymentsDependencies = Depends(get_deps),
):
    """
    Create an order and submit it to the gateway.

    Errors are raised as pesaflow exceptions and rendered by the
    registered handlers: 400 validation, 500 authentication, 502 gateway.
    """
    result = await deps.orchestrator.initiate(request.to_order_request())
    return InitiatePaymentResponse(**result.to_dict())


@router.get("/payment-callback")
async def payment_callback(
    order_tracking_id: Optional[str] = Query(None, alias="orderTrackingId"),
    pesapal_tracking_id: Optional[str] = Query(None, alias="OrderTrackingId"),
    status: Optional[str] = Query(None),
    deps: PaymentsDependencies = Depends(get_deps),
) -> RedirectResponse:
    """
    Gateway redirect/notification for a finished payment.

    Always answers with a 302 to the success or failure page.
    """
    orchestrator = deps.orchestrator
    tracking_id = order_tracking_id or pesapal_tracking_id

    if not tracking_id:
        logger.warning("Payment callback without a tracking id", extra={"reported_status": status})
        return RedirectResponse(orchestrator.failure_redirect_url, status_code=302)

    try:
        destination = await orchestrator.notify(tracking_id, status)
    except Exception:
        logger.exception(
            "Payment callback failed, sending payer to the failure page",
            extra={"tracking_id": tracking_id},
        )
        destination = orchestrator.failure_redirect_url

    return RedirectResponse(destination, status_code=302)
