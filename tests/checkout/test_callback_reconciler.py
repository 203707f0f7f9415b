"""Tests for callback reconciliation and stale order expiry."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pesaflow_core.exceptions import StaleTransitionError, UnknownOrderError
from pesaflow_checkout.models import OrderStatus, RedirectDecision
from pesaflow_checkout.reconciler import CallbackReconciler, decision_for, map_reported_status
from pesaflow_checkout.store import InMemoryOrderStore


class ContendedStore(InMemoryOrderStore):
    """Every transition loses to a concurrent writer."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def transition(self, order_id, target, *, expected_version=None, now=None, **changes):
        self.attempts += 1
        raise StaleTransitionError(order_id, "AwaitingCallback", target.value)


async def _awaiting(store, order, tracking_id="trk-1", now=None):
    await store.create(order)
    await store.transition(
        order.order_id,
        OrderStatus.SUBMITTED,
        now=now,
        gateway_tracking_id=tracking_id,
        redirect_url="https://pay.test/iframe",
    )
    return await store.transition(order.order_id, OrderStatus.AWAITING_CALLBACK, now=now)


@pytest.fixture
def reconciler(store) -> CallbackReconciler:
    return CallbackReconciler(store)


class TestMapReportedStatus:
    @pytest.mark.parametrize("reported", ["COMPLETED", "completed", " Completed ", "1"])
    def test_completed(self, reported):
        assert map_reported_status(reported) is OrderStatus.COMPLETED

    @pytest.mark.parametrize(
        "reported", ["FAILED", "CANCELLED", "INVALID", "REVERSED", "REJECTED", "0", "2", "3"]
    )
    def test_failed(self, reported):
        assert map_reported_status(reported) is OrderStatus.FAILED

    @pytest.mark.parametrize("reported", ["PENDING", "", None, "SOMETHING_ELSE"])
    def test_non_terminal(self, reported):
        assert map_reported_status(reported) is None


class TestReconcile:
    """Reported outcomes are recorded once."""

    async def test_completed_callback(self, reconciler, store, make_order):
        order = make_order()
        awaiting = await _awaiting(store, order)

        decision = await reconciler.reconcile("trk-1", "COMPLETED")

        assert decision is RedirectDecision.SUCCESS
        stored = await store.get(order.order_id)
        assert stored.status is OrderStatus.COMPLETED
        assert stored.version == awaiting.version + 1

    async def test_failed_callback(self, reconciler, store, make_order):
        order = make_order()
        await _awaiting(store, order)

        decision = await reconciler.reconcile("trk-1", "FAILED")

        assert decision is RedirectDecision.FAILURE
        stored = await store.get(order.order_id)
        assert stored.status is OrderStatus.FAILED
        assert stored.failure_reason == "gateway_reported:FAILED"

    async def test_gateway_invalid_maps_to_failed(self, reconciler, store, make_order):
        order = make_order()
        await _awaiting(store, order)

        await reconciler.reconcile("trk-1", "INVALID")

        assert (await store.get(order.order_id)).status is OrderStatus.FAILED

    async def test_callback_before_awaiting_recorded(self, reconciler, store, make_order):
        order = make_order()
        await store.create(order)
        await store.transition(
            order.order_id, OrderStatus.SUBMITTED, gateway_tracking_id="trk-early"
        )

        decision = await reconciler.reconcile("trk-early", "COMPLETED")

        assert decision is RedirectDecision.SUCCESS
        assert (await store.get(order.order_id)).status is OrderStatus.COMPLETED

    async def test_unknown_tracking_id(self, reconciler, store, make_order):
        await _awaiting(store, make_order())

        with pytest.raises(UnknownOrderError) as exc_info:
            await reconciler.reconcile("trk-unknown", "COMPLETED")
        assert exc_info.value.tracking_id == "trk-unknown"

    @pytest.mark.parametrize("reported", ["PENDING", None, "MYSTERY"])
    async def test_non_terminal_report_leaves_order(self, reconciler, store, make_order, reported):
        order = make_order()
        awaiting = await _awaiting(store, order)

        decision = await reconciler.reconcile("trk-1", reported)

        assert decision is RedirectDecision.FAILURE
        assert await store.get(order.order_id) == awaiting


class TestDuplicateCallbacks:
    """The first terminal outcome wins."""

    async def test_duplicate_completed(self, reconciler, store, make_order):
        order = make_order()
        await _awaiting(store, order)
        await reconciler.reconcile("trk-1", "COMPLETED")
        settled = await store.get(order.order_id)

        decision = await reconciler.reconcile("trk-1", "COMPLETED")

        assert decision is RedirectDecision.SUCCESS
        assert await store.get(order.order_id) == settled

    async def test_conflicting_later_report_ignored(self, reconciler, store, make_order):
        order = make_order()
        await _awaiting(store, order)
        await reconciler.reconcile("trk-1", "COMPLETED")
        settled = await store.get(order.order_id)

        decision = await reconciler.reconcile("trk-1", "FAILED")

        assert decision is RedirectDecision.SUCCESS
        stored = await store.get(order.order_id)
        assert stored.status is OrderStatus.COMPLETED
        assert stored.version == settled.version
        assert stored.updated_at == settled.updated_at

    async def test_failed_order_stays_failed(self, reconciler, store, make_order):
        order = make_order()
        await _awaiting(store, order)
        await reconciler.reconcile("trk-1", "FAILED")

        assert await reconciler.reconcile("trk-1", "COMPLETED") is RedirectDecision.FAILURE
        assert (await store.get(order.order_id)).status is OrderStatus.FAILED

    async def test_concurrent_conflicting_callbacks(self, reconciler, store, make_order):
        order = make_order()
        awaiting = await _awaiting(store, order)

        decisions = await asyncio.gather(
            reconciler.reconcile("trk-1", "COMPLETED"),
            reconciler.reconcile("trk-1", "FAILED"),
            reconciler.reconcile("trk-1", "COMPLETED"),
        )

        stored = await store.get(order.order_id)
        assert stored.is_terminal
        assert stored.version == awaiting.version + 1
        assert set(decisions) == {decision_for(stored)}

    async def test_gives_up_after_repeated_conflicts(self, make_order):
        store = ContendedStore()
        order = make_order()
        await store.create(order)
        # Seed a pending order directly, bypassing the contended transition
        await InMemoryOrderStore.transition(
            store, order.order_id, OrderStatus.SUBMITTED, gateway_tracking_id="trk-1"
        )
        reconciler = CallbackReconciler(store, max_attempts=3)

        decision = await reconciler.reconcile("trk-1", "COMPLETED")

        assert decision is RedirectDecision.FAILURE
        assert store.attempts == 3
        assert (await store.get(order.order_id)).status is OrderStatus.SUBMITTED


class TestExpireStale:
    """Orders whose callback never arrives are failed."""

    async def test_expires_only_stale_pending_orders(self, reconciler, store, make_order):
        now = datetime.now(timezone.utc)
        old = now - timedelta(minutes=45)

        stale = make_order()
        fresh = make_order()
        created = make_order(created_at=old, updated_at=old)
        await _awaiting(store, stale, "trk-stale", now=old)
        await _awaiting(store, fresh, "trk-fresh")
        await store.create(created)

        expired = await reconciler.expire_stale(now=now)

        assert expired == 1
        stored = await store.get(stale.order_id)
        assert stored.status is OrderStatus.FAILED
        assert stored.failure_reason == "callback_timeout"
        assert stored.updated_at == now
        assert (await store.get(fresh.order_id)).status is OrderStatus.AWAITING_CALLBACK
        assert (await store.get(created.order_id)).status is OrderStatus.CREATED

    async def test_custom_window(self, store, make_order):
        now = datetime.now(timezone.utc)
        order = make_order()
        await _awaiting(store, order, now=now - timedelta(minutes=10))

        assert await CallbackReconciler(store, callback_timeout_minutes=30).expire_stale(now=now) == 0
        assert await CallbackReconciler(store, callback_timeout_minutes=5).expire_stale(now=now) == 1

    async def test_late_callback_after_expiry(self, reconciler, store, make_order):
        now = datetime.now(timezone.utc)
        order = make_order()
        await _awaiting(store, order, now=now - timedelta(hours=2))
        await reconciler.expire_stale(now=now)

        decision = await reconciler.reconcile("trk-1", "COMPLETED")

        assert decision is RedirectDecision.FAILURE
        assert (await store.get(order.order_id)).status is OrderStatus.FAILED

    async def test_clock_used_by_default(self, store, make_order):
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        await _awaiting(store, make_order())

        reconciler = CallbackReconciler(store, clock=lambda: later)

        assert await reconciler.expire_stale() == 1
