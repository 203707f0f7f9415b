"""
Order storage with optimistic concurrency.

Every status change goes through `OrderStore.transition`, which reads the
current order, applies the state machine and writes the result only if the
stored version is still the one that was read. A writer that loses the race
gets StaleTransitionError and must re-read.

Two backends:
- InMemoryOrderStore: per-order asyncio.Lock around each swap
- PostgresOrderStore: `UPDATE ... WHERE order_id = $1 AND version = $2`
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pesaflow_core.exceptions import (
    DuplicateOrderError,
    OrderNotFoundError,
    StaleTransitionError,
)

from .models import Order, OrderStatus
from .state_machine import apply_transition

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64

# Statuses the callback timeout applies to
PENDING_STATUSES = (OrderStatus.SUBMITTED, OrderStatus.AWAITING_CALLBACK)


class OrderStore(ABC):
    """Abstract interface for order storage."""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Persist a new order. Raises DuplicateOrderError if the id is taken."""
        pass

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_stale(self, older_than: datetime) -> List[Order]:
        """Orders still waiting on the gateway whose last change predates `older_than`."""
        pass

    @abstractmethod
    async def _swap(self, expected_version: int, updated: Order) -> bool:
        """Write `updated` only if the stored version equals `expected_version`."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def transition(
        self,
        order_id: str,
        target: OrderStatus,
        *,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
        **changes,
    ) -> Order:
        """Move an order to `target` with a version-guarded write.

        Raises:
            OrderNotFoundError: no such order
            DuplicateCallbackError: the order is already terminal
            StaleTransitionError: disallowed transition, or another writer
                changed the order first
        """
        current = await self.get(order_id)
        if current is None:
            raise OrderNotFoundError(order_id)

        if expected_version is not None and current.version != expected_version:
            logger.info(
                "Order changed since it was read",
                extra={
                    "order_id": order_id,
                    "expected_version": expected_version,
                    "stored_version": current.version,
                },
            )
            raise StaleTransitionError(
                order_id,
                current.status.value,
                target.value,
                message=f"Order '{order_id}' is at version {current.version}, expected {expected_version}",
            )

        updated = apply_transition(current, target, now=now, **changes)

        if not await self._swap(current.version, updated):
            logger.info(
                "Lost compare-and-swap race",
                extra={"order_id": order_id, "target_status": target.value},
            )
            raise StaleTransitionError(
                order_id,
                current.status.value,
                target.value,
                message=f"Order '{order_id}' was modified concurrently",
            )

        logger.info(
            "Order transitioned",
            extra={
                "order_id": order_id,
                "from_status": current.status.value,
                "to_status": target.value,
                "version": updated.version,
            },
        )
        return updated


class InMemoryOrderStore(OrderStore):
    """
    In-memory order store for development and testing.

    Note: state is lost on restart and is not shared between processes.
    Use PostgresOrderStore for anything that takes real payments.
    """

    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._by_tracking_id: Dict[str, str] = {}
        # Fixed stripes: the lock count stays constant however many orders exist
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        return self._locks[hash(order_id) % len(self._locks)]

    async def create(self, order: Order) -> Order:
        if order.order_id in self._orders:
            raise DuplicateOrderError(order.order_id)
        self._orders[order.order_id] = order
        if order.gateway_tracking_id:
            self._by_tracking_id[order.gateway_tracking_id] = order.order_id
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        order_id = self._by_tracking_id.get(tracking_id)
        if order_id is None:
            return None
        return self._orders.get(order_id)

    async def list_stale(self, older_than: datetime) -> List[Order]:
        return [
            order
            for order in self._orders.values()
            if order.status in PENDING_STATUSES and order.updated_at < older_than
        ]

    async def _swap(self, expected_version: int, updated: Order) -> bool:
        async with self._lock_for(updated.order_id):
            stored = self._orders.get(updated.order_id)
            if stored is None or stored.version != expected_version:
                return False

            tracking_id = updated.gateway_tracking_id
            if tracking_id:
                owner = self._by_tracking_id.get(tracking_id)
                if owner is not None and owner != updated.order_id:
                    logger.error(
                        "Gateway tracking id already belongs to another order",
                        extra={"order_id": updated.order_id, "tracking_id": tracking_id},
                    )
                    return False
                self._by_tracking_id[tracking_id] = updated.order_id

            self._orders[updated.order_id] = updated
            return True

    def count(self) -> int:
        return len(self._orders)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkout_orders (
    order_id            TEXT PRIMARY KEY,
    amount              NUMERIC NOT NULL,
    currency            TEXT NOT NULL,
    payer_email         TEXT NOT NULL,
    payer_phone         TEXT NOT NULL,
    description         TEXT NOT NULL,
    item_label          TEXT,
    status              TEXT NOT NULL,
    gateway_tracking_id TEXT UNIQUE,
    redirect_url        TEXT,
    failure_reason      TEXT,
    created_at          TIMESTAMPTZ NOT NULL,
    updated_at          TIMESTAMPTZ NOT NULL,
    version             INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_checkout_orders_pending
    ON checkout_orders (status, updated_at);
"""

_COLUMNS = (
    "order_id, amount, currency, payer_email, payer_phone, description, item_label, "
    "status, gateway_tracking_id, redirect_url, failure_reason, created_at, updated_at, version"
)


class PostgresOrderStore(OrderStore):
    """PostgreSQL-backed order store (asyncpg)."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 5):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool = None

    async def _get_pool(self):
        if self._pool is None:
            import asyncpg
            dsn = self._dsn
            if dsn.startswith("postgres://"):
                dsn = dsn.replace("postgres://", "postgresql://", 1)
            self._pool = await asyncpg.create_pool(
                dsn, min_size=self._min_size, max_size=self._max_size
            )
        return self._pool

    async def init_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(_SCHEMA)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @staticmethod
    def _row_to_order(row) -> Order:
        return Order(
            order_id=row["order_id"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            payer_email=row["payer_email"],
            payer_phone=row["payer_phone"],
            description=row["description"],
            item_label=row["item_label"],
            status=OrderStatus(row["status"]),
            gateway_tracking_id=row["gateway_tracking_id"],
            redirect_url=row["redirect_url"],
            failure_reason=row["failure_reason"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )

    async def create(self, order: Order) -> Order:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            res = await conn.execute(
                f"""
                INSERT INTO checkout_orders ({_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                ON CONFLICT (order_id) DO NOTHING
                """,
                order.order_id,
                order.amount,
                order.currency,
                order.payer_email,
                order.payer_phone,
                order.description,
                order.item_label,
                order.status.value,
                order.gateway_tracking_id,
                order.redirect_url,
                order.failure_reason,
                order.created_at,
                order.updated_at,
                order.version,
            )
        if res != "INSERT 0 1":
            raise DuplicateOrderError(order.order_id)
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM checkout_orders WHERE order_id = $1",
                order_id,
            )
        return self._row_to_order(row) if row else None

    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM checkout_orders WHERE gateway_tracking_id = $1",
                tracking_id,
            )
        return self._row_to_order(row) if row else None

    async def list_stale(self, older_than: datetime) -> List[Order]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM checkout_orders
                WHERE status = ANY($1::text[]) AND updated_at < $2
                ORDER BY updated_at
                """,
                [status.value for status in PENDING_STATUSES],
                older_than,
            )
        return [self._row_to_order(row) for row in rows]

    async def _swap(self, expected_version: int, updated: Order) -> bool:
        import asyncpg

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            try:
                res = await conn.execute(
                    """
                    UPDATE checkout_orders
                    SET status = $3,
                        gateway_tracking_id = $4,
                        redirect_url = $5,
                        failure_reason = $6,
                        updated_at = $7,
                        version = $8
                    WHERE order_id = $1 AND version = $2
                    """,
                    updated.order_id,
                    expected_version,
                    updated.status.value,
                    updated.gateway_tracking_id,
                    updated.redirect_url,
                    updated.failure_reason,
                    updated.updated_at,
                    updated.version,
                )
            except asyncpg.UniqueViolationError:
                logger.error(
                    "Gateway tracking id already belongs to another order",
                    extra={
                        "order_id": updated.order_id,
                        "tracking_id": updated.gateway_tracking_id,
                    },
                )
                return False
        return res == "UPDATE 1"


def create_order_store(database_url: str = "") -> OrderStore:
    """Pick the backend from the DSN: Postgres when given one, memory otherwise."""
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgresOrderStore(database_url)
    return InMemoryOrderStore()
