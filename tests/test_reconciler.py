"""Tests for per-order reconciliation."""

import asyncio
from datetime import timedelta

import pytest

from trackdash.carriers.base import FetchOutcome, TrackingResult
from trackdash.db.models import OrderStatus
from trackdash.errors import StoreError
from trackdash.orders import TrackingEntry
from trackdash.services.classifier import CarrierClassifier
from trackdash.services.metrics import delay_days
from trackdash.services.reconciler import (
    FINALIZED_REASON,
    ChannelClassified,
    KeyedLocks,
    OrderReconciler,
    Skipped,
    Updated,
    mark_channel_managed,
    merge_tracking,
)


@pytest.fixture
def classifier():
    return CarrierClassifier(["ColetasME2", "Shopee Xpress"])


@pytest.fixture
def make_reconciler(repository, classifier, now):
    def _make(carrier):
        return OrderReconciler(repository, carrier, classifier=classifier, clock=lambda: now)

    return _make


@pytest.fixture
def save_spy(repository):
    """Record every save issued through the repository."""
    saves = []
    original = repository.save

    async def spy(order, replace_history=True):
        saves.append(order)
        return await original(order, replace_history)

    repository.save = spy
    return saves


def found(now, **overrides):
    values = {
        "outcome": FetchOutcome.FOUND,
        "status": OrderStatus.SHIPPED,
        "status_text": "Em trânsito",
        "carrier_name": "Jadlog",
        "events": [
            TrackingEntry("SHIPPED", "Em trânsito", now - timedelta(days=1)),
            TrackingEntry("CREATED", "Pedido criado", now - timedelta(days=3)),
        ],
    }
    values.update(overrides)
    return TrackingResult(**values)


class TestFinalizedOrders:
    """Terminal orders are never fetched or written."""

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.DELIVERED, OrderStatus.FAILURE, OrderStatus.RETURNED, OrderStatus.CANCELED],
    )
    async def test_skipped_without_side_effects(
        self, status, stored_order, repository, make_reconciler, stub_carrier, save_spy
    ):
        order = await stored_order(status=status)
        save_spy.clear()
        carrier = stub_carrier()

        outcome = await make_reconciler(carrier).reconcile(order)

        assert isinstance(outcome, Skipped)
        assert outcome.reason == FINALIZED_REASON
        assert carrier.calls == []
        assert save_spy == []
        assert await repository.get(order.id) == order

    async def test_repeated_reconcile_is_stable(
        self, stored_order, repository, make_reconciler, stub_carrier
    ):
        order = await stored_order(status=OrderStatus.DELIVERED)
        reconciler = make_reconciler(stub_carrier())

        for _ in range(3):
            await reconciler.reconcile(order)

        stored = await repository.get(order.id)
        assert stored.last_api_sync is None
        assert stored == order


class TestChannelLogistics:
    """Orders shipped by the sales channel are classified, not fetched."""

    async def test_classified(self, stored_order, repository, make_reconciler, stub_carrier, now):
        order = await stored_order(
            freight_type="ColetasME2", status=OrderStatus.PENDING, tracking_history=()
        )
        carrier = stub_carrier()

        outcome = await make_reconciler(carrier).reconcile(order)

        assert isinstance(outcome, ChannelClassified)
        assert carrier.calls == []
        stored = await repository.get(order.id)
        assert stored.status == OrderStatus.CHANNEL_LOGISTICS
        assert len(stored.tracking_history) == 1
        event = stored.tracking_history[0]
        assert event.status == "CHANNEL_LOGISTICS"
        assert event.date == order.shipping_date
        assert stored.last_update == order.shipping_date

    async def test_priority_label(self, stored_order, repository, make_reconciler, stub_carrier):
        order = await stored_order(freight_type="Retirada Prioritária na Agência")
        carrier = stub_carrier()

        outcome = await make_reconciler(carrier).reconcile(order)

        assert isinstance(outcome, ChannelClassified)
        assert carrier.calls == []
        assert (await repository.get(order.id)).status == OrderStatus.CHANNEL_LOGISTICS

    async def test_existing_history_is_kept(
        self, stored_order, repository, make_reconciler, stub_carrier
    ):
        order = await stored_order(freight_type="Shopee Xpress")

        await make_reconciler(stub_carrier()).reconcile(order)

        stored = await repository.get(order.id)
        assert stored.tracking_history == order.tracking_history

    async def test_classification_is_sticky(
        self, stored_order, repository, make_reconciler, stub_carrier, save_spy
    ):
        """A second pass finds nothing to change and writes nothing."""
        order = await stored_order(freight_type="ColetasME2", tracking_history=())
        save_spy.clear()
        reconciler = make_reconciler(stub_carrier())

        await reconciler.reconcile(order)
        first = await repository.get(order.id)
        outcome = await reconciler.reconcile(first)

        assert isinstance(outcome, ChannelClassified)
        assert len(save_spy) == 1
        assert await repository.get(order.id) == first

    async def test_undated_order_gets_event_at_sync_time(
        self, stored_order, repository, make_reconciler, stub_carrier, now
    ):
        order = await stored_order(
            freight_type="ColetasME2", shipping_date=None, last_update=None, tracking_history=()
        )

        await make_reconciler(stub_carrier()).reconcile(order)

        stored = await repository.get(order.id)
        assert [event.date for event in stored.tracking_history] == [now]
        assert stored.last_update == now

    def test_mark_channel_managed_prefers_shipping_date(self, make_order, now):
        order = make_order(tracking_history=())

        classified = mark_channel_managed(order, now)

        assert classified.tracking_history[0].date == order.shipping_date


class TestFetchFailures:
    """Unsuccessful fetches only record the attempt."""

    async def test_no_data_keeps_order(
        self, stored_order, repository, make_reconciler, stub_carrier, now
    ):
        order = await stored_order(
            status=OrderStatus.SHIPPED, estimated_delivery_date=now - timedelta(days=3)
        )

        outcome = await make_reconciler(stub_carrier()).reconcile(order)

        assert isinstance(outcome, Skipped)
        assert outcome.reason == "No tracking data yet"
        stored = await repository.get(order.id)
        assert stored.status == OrderStatus.SHIPPED
        assert stored.estimated_delivery_date == order.estimated_delivery_date
        assert stored.tracking_history == order.tracking_history
        assert stored.last_api_error == "No tracking data yet"
        assert stored.last_api_sync == now
        assert delay_days(stored, now) == 3

    async def test_failure_reason_is_reported(
        self, stored_order, repository, make_reconciler, stub_carrier
    ):
        order = await stored_order()
        carrier = stub_carrier(default=TrackingResult.failed("Tracking provider timed out"))

        outcome = await make_reconciler(carrier).reconcile(order)

        assert isinstance(outcome, Skipped)
        assert outcome.reason == "Tracking provider timed out"
        stored = await repository.get(order.id)
        assert stored.status == order.status
        assert stored.freight_type == order.freight_type
        assert stored.last_update == order.last_update


class TestMerge:
    """Successful fetches replace the tracked fields."""

    async def test_updated(self, stored_order, repository, make_reconciler, stub_carrier, now):
        order = await stored_order(freight_type="Aguardando", last_api_error="previous failure")
        result = found(now, expected_delivery=now + timedelta(days=4))

        outcome = await make_reconciler(stub_carrier(default=result)).reconcile(order)

        assert isinstance(outcome, Updated)
        stored = await repository.get(order.id)
        assert stored.status == OrderStatus.SHIPPED
        assert stored.freight_type == "Jadlog"
        assert stored.estimated_delivery_date == now + timedelta(days=4)
        assert [event.status for event in stored.tracking_history] == ["CREATED", "SHIPPED"]
        assert stored.last_update == now - timedelta(days=1)
        assert stored.last_api_sync == now
        assert stored.last_api_error is None
        assert stored.is_delayed is False

    async def test_estimate_is_retained(
        self, stored_order, repository, make_reconciler, stub_carrier, now
    ):
        order = await stored_order(estimated_delivery_date=now - timedelta(days=2))

        await make_reconciler(stub_carrier(default=found(now))).reconcile(order)

        stored = await repository.get(order.id)
        assert stored.estimated_delivery_date == now - timedelta(days=2)
        assert stored.is_delayed is True

    async def test_delivered_is_never_delayed(
        self, stored_order, repository, make_reconciler, stub_carrier, now
    ):
        order = await stored_order(estimated_delivery_date=now - timedelta(days=2))
        result = found(now, status=OrderStatus.DELIVERED)

        await make_reconciler(stub_carrier(default=result)).reconcile(order)

        stored = await repository.get(order.id)
        assert stored.status == OrderStatus.DELIVERED
        assert stored.is_delayed is False

    async def test_empty_history_uses_now(
        self, stored_order, repository, make_reconciler, stub_carrier, now
    ):
        order = await stored_order()

        await make_reconciler(stub_carrier(default=found(now, events=[]))).reconcile(order)

        stored = await repository.get(order.id)
        assert stored.tracking_history == ()
        assert stored.last_update == now

    def test_duplicates_collapse(self, make_order, now):
        event = TrackingEntry("SHIPPED", "Em trânsito", now - timedelta(days=1))
        existing = make_order()

        merged = merge_tracking(existing, found(now, events=[event, event]), now)

        assert merged.tracking_history == (event,)
        assert existing.tracking_history != merged.tracking_history

    async def test_concurrent_syncs_do_not_interleave(
        self, stored_order, make_reconciler, stub_carrier, now
    ):
        """The second sync of the same order sees the first one's result."""
        order = await stored_order("2001")
        carrier = stub_carrier(default=found(now, status=OrderStatus.DELIVERED))
        reconciler = make_reconciler(carrier)

        outcomes = await asyncio.gather(reconciler.reconcile(order), reconciler.reconcile(order))

        assert carrier.calls == [order.order_number]
        assert sorted(type(outcome).__name__ for outcome in outcomes) == ["Skipped", "Updated"]


class FailingRepository:
    async def get(self, order_id):
        return None

    async def save(self, order, replace_history=True):
        raise StoreError("database is locked")


class TestStoreFailures:
    async def test_store_error_propagates(self, make_order, stub_carrier, classifier, now):
        reconciler = OrderReconciler(
            FailingRepository(),
            stub_carrier(default=found(now)),
            classifier=classifier,
            clock=lambda: now,
        )

        with pytest.raises(StoreError):
            await reconciler.reconcile(make_order())


class TestOrderLocks:
    async def test_registry_drained_after_sequential_syncs(
        self, make_order, stub_carrier, classifier, repository, now
    ):
        locks = KeyedLocks()
        reconciler = OrderReconciler(
            repository, stub_carrier(), classifier=classifier, clock=lambda: now, locks=locks
        )

        for index in range(500):
            await reconciler.reconcile(make_order(f"D{index}", status=OrderStatus.DELIVERED))

        assert len(locks) == 0

    async def test_registry_drained_after_concurrent_syncs(
        self, stored_order, stub_carrier, classifier, repository, now
    ):
        order = await stored_order("2002")
        locks = KeyedLocks()
        reconciler = OrderReconciler(
            repository,
            stub_carrier(default=found(now)),
            classifier=classifier,
            clock=lambda: now,
            locks=locks,
        )

        await asyncio.gather(*(reconciler.reconcile(order) for _ in range(3)))

        assert len(locks) == 0

    async def test_same_key_is_serialised(self):
        locks = KeyedLocks()
        trace = []

        async def worker(name):
            async with locks.hold("K"):
                trace.append(f"{name} in")
                await asyncio.sleep(0)
                trace.append(f"{name} out")

        await asyncio.gather(worker("a"), worker("b"))

        assert trace == ["a in", "a out", "b in", "b out"]
        assert len(locks) == 0

    async def test_cancelled_waiter_releases_entry(self):
        locks = KeyedLocks()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("K"):
                entered.set()
                await release.wait()

        async def waiter():
            async with locks.hold("K"):
                pass

        holding = asyncio.create_task(holder())
        await entered.wait()
        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        waiting.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiting
        release.set()
        await holding

        assert len(locks) == 0
