"""
Pesaflow Checkout - order lifecycle against the Pesapal gateway.

This package builds purchase orders for the storefront, submits them to
Pesapal and reconciles the outcomes Pesapal reports back:

- Single-flight bearer token cache
- Order state machine with version-guarded (compare-and-swap) writes
- In-memory and PostgreSQL order stores
- Idempotent callback reconciliation and callback timeouts
"""

from pesaflow_checkout.builder import OrderBuilder, new_order_id
from pesaflow_checkout.catalogue import CatalogueItem, find_item
from pesaflow_checkout.connectors import GatewayConnector, PesapalConnector
from pesaflow_checkout.credentials import GatewayCredentials
from pesaflow_checkout.models import (
    AuthToken,
    GatewaySubmission,
    Order,
    OrderRequest,
    OrderStatus,
    RedirectDecision,
    SubmissionResult,
    TERMINAL_STATUSES,
)
from pesaflow_checkout.orchestrator import CheckoutOrchestrator
from pesaflow_checkout.reconciler import CallbackReconciler, map_reported_status
from pesaflow_checkout.state_machine import ALLOWED_TRANSITIONS, apply_transition
from pesaflow_checkout.store import (
    InMemoryOrderStore,
    OrderStore,
    PostgresOrderStore,
    create_order_store,
)
from pesaflow_checkout.submitter import OrderSubmitter
from pesaflow_checkout.tokens import TokenManager

__all__ = [
    # Orchestration
    "CheckoutOrchestrator",
    # Components
    "OrderBuilder",
    "OrderSubmitter",
    "CallbackReconciler",
    "TokenManager",
    "GatewayCredentials",
    # Storage
    "OrderStore",
    "InMemoryOrderStore",
    "PostgresOrderStore",
    "create_order_store",
    # State machine
    "ALLOWED_TRANSITIONS",
    "apply_transition",
    "map_reported_status",
    # Connectors
    "GatewayConnector",
    "PesapalConnector",
    # Catalogue
    "CatalogueItem",
    "find_item",
    # Models
    "AuthToken",
    "GatewaySubmission",
    "Order",
    "OrderRequest",
    "OrderStatus",
    "RedirectDecision",
    "SubmissionResult",
    "TERMINAL_STATUSES",
    "new_order_id",
]
