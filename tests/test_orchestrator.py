"""
Tests for the order-creation saga: happy path, pricing failures,
reservation failures with compensation, and compensation failures.
"""

import json
import logging
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from fulfillment.errors import (
    InsufficientStock,
    InvalidRequest,
    OrderCreationFailed,
    OrderNotFound,
    ProductNotFound,
    ProductNotTracked,
    TransportError,
)
from fulfillment.inventory.aggregate import Reservation, ReservationStatus
from fulfillment.order.aggregate import OrderStatus
from fulfillment.outcome import Outcome
from fulfillment.saga.orchestrator import OrderSagaOrchestrator


def published(redis, channel):
    return [
        json.loads(call.args[1])
        for call in redis.publish.await_args_list
        if call.args[0] == channel
    ]


class TestCreateOrder:
    async def test_confirms_order_when_all_reservations_succeed(
        self, orchestrator, ledger, laptop, mouse
    ):
        await ledger.add_stock(laptop.id, 10)
        await ledger.add_stock(mouse.id, 10)

        order = await orchestrator.create_order(
            "Alice", [(laptop.id, 2), (mouse.id, 1)]
        )

        assert order.status is OrderStatus.CONFIRMED
        assert order.total_amount == Decimal("2029.97")
        assert [li.product_name for li in order.line_items] == ["Laptop", "Mouse"]
        assert order.total_amount == sum(
            li.quantity * li.unit_price for li in order.line_items
        )

        laptop_stock = await ledger.get_stock(laptop.id)
        assert laptop_stock.quantity_available == 8
        assert laptop_stock.quantity_reserved == 2
        reservation = await ledger.find_reservation(mouse.id, order.id)
        assert reservation.status is ReservationStatus.PENDING
        assert reservation.quantity == 1

    async def test_confirmed_order_is_persisted(self, orchestrator, ledger, laptop):
        await ledger.add_stock(laptop.id, 5)

        order = await orchestrator.create_order("Charlie", [(laptop.id, 3)])
        stored = await orchestrator.get_order(order.id)

        assert stored.status is OrderStatus.CONFIRMED
        assert stored.total_amount == Decimal("2999.97")
        assert stored.line_items[0].unit_price == Decimal("999.99")

    async def test_compensates_when_later_reservation_fails(
        self, orchestrator, ledger, laptop, mouse
    ):
        await ledger.add_stock(laptop.id, 10)
        await ledger.add_stock(mouse.id, 1)
        (await ledger.reserve(mouse.id, uuid4(), 1)).unwrap()

        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order("Alice", [(laptop.id, 2), (mouse.id, 1)])

        error = exc_info.value
        assert isinstance(error.cause, InsufficientStock)
        assert error.__cause__ is error.cause

        order = await orchestrator.get_order(error.order_id)
        assert order.status is OrderStatus.FAILED

        # P1 was reserved and then released
        laptop_reservation = await ledger.find_reservation(laptop.id, order.id)
        assert laptop_reservation.status is ReservationStatus.CANCELLED
        laptop_stock = await ledger.get_stock(laptop.id)
        assert laptop_stock.quantity_available == 10
        assert laptop_stock.quantity_reserved == 0

        # P2 was never reserved
        assert await ledger.find_reservation(mouse.id, order.id) is None

    async def test_stops_reserving_after_first_failure(
        self, orchestrator, ledger, catalogue, laptop, mouse
    ):
        keyboard = catalogue.add(uuid4(), "Keyboard", "79.99")
        await ledger.add_stock(laptop.id, 10)
        await ledger.add_stock(keyboard.id, 10)
        # mouse is priced but not tracked by the ledger

        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order(
                "Dana", [(laptop.id, 1), (mouse.id, 1), (keyboard.id, 1)]
            )

        assert isinstance(exc_info.value.cause, ProductNotTracked)
        order_id = exc_info.value.order_id
        assert await ledger.find_reservation(keyboard.id, order_id) is None
        assert (await ledger.get_stock(keyboard.id)).quantity_available == 10

    async def test_pricing_failure_attempts_no_reservation(
        self, orchestrator, ledger, laptop
    ):
        await ledger.add_stock(laptop.id, 10)
        unknown = uuid4()

        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order("Eve", [(laptop.id, 1), (unknown, 1)])

        assert isinstance(exc_info.value.cause, ProductNotFound)
        order = await orchestrator.get_order(exc_info.value.order_id)
        assert order.status is OrderStatus.FAILED
        assert await ledger.find_reservation(laptop.id, order.id) is None
        assert (await ledger.get_stock(laptop.id)).quantity_available == 10

    async def test_pricing_transport_error_fails_order(
        self, order_store, ledger, laptop
    ):
        pricing = AsyncMock()
        pricing.lookup_product.side_effect = ConnectionError("product service down")
        orchestrator = OrderSagaOrchestrator(order_store, pricing, ledger)

        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order("Frank", [(laptop.id, 1)])

        assert isinstance(exc_info.value.cause, TransportError)
        order = await orchestrator.get_order(exc_info.value.order_id)
        assert order.status is OrderStatus.FAILED

    async def test_saga_log_records_compensation(
        self, orchestrator, ledger, laptop, mouse
    ):
        await ledger.add_stock(laptop.id, 10)

        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order("Alice", [(laptop.id, 2), (mouse.id, 1)])

        steps = [(s["action"], s["status"]) for s in exc_info.value.saga_log]
        assert steps == [
            ("LookupProduct", "COMPLETED"),
            ("LookupProduct", "COMPLETED"),
            ("ReserveStock", "COMPLETED"),
            ("ReserveStock", "FAILED"),
            ("CancelReservation (COMPENSATING)", "COMPLETED"),
        ]


class TestCompensationFailures:
    def _inventory(self, order_failure):
        reservation = Reservation(stock_item_id=uuid4(), order_id=uuid4(), quantity=1)
        inventory = AsyncMock()
        inventory.reserve.side_effect = [
            Outcome.success(reservation),
            Outcome.failure(order_failure),
        ]
        return inventory, reservation

    async def test_cancel_exception_keeps_reservation_error(
        self, order_store, catalogue, laptop, mouse, caplog
    ):
        cause = InsufficientStock(mouse.id, 1, 0)
        inventory, reservation = self._inventory(cause)
        inventory.cancel.side_effect = RuntimeError("inventory service down")
        orchestrator = OrderSagaOrchestrator(order_store, catalogue, inventory)

        with caplog.at_level(logging.ERROR, logger="fulfillment.saga.orchestrator"):
            with pytest.raises(OrderCreationFailed) as exc_info:
                await orchestrator.create_order(
                    "Bob", [(laptop.id, 1), (mouse.id, 1)]
                )

        assert exc_info.value.cause is cause
        inventory.cancel.assert_awaited_once_with(reservation.id)
        order = await orchestrator.get_order(exc_info.value.order_id)
        assert order.status is OrderStatus.FAILED
        assert any(
            "Failed to cancel reservation" in r.getMessage() for r in caplog.records
        )

    async def test_cancel_failure_outcome_is_logged(
        self, order_store, catalogue, laptop, mouse, caplog
    ):
        cause = InsufficientStock(mouse.id, 1, 0)
        inventory, reservation = self._inventory(cause)
        inventory.cancel.return_value = Outcome.failure(TransportError("timeout"))
        orchestrator = OrderSagaOrchestrator(order_store, catalogue, inventory)

        with caplog.at_level(logging.ERROR, logger="fulfillment.saga.orchestrator"):
            with pytest.raises(OrderCreationFailed) as exc_info:
                await orchestrator.create_order(
                    "Bob", [(laptop.id, 1), (mouse.id, 1)]
                )

        assert exc_info.value.cause is cause
        assert exc_info.value.saga_log[-1]["status"] == "FAILED"
        assert any("timeout" in r.getMessage() for r in caplog.records)

    async def test_reservation_exception_triggers_compensation(
        self, order_store, catalogue, laptop, mouse
    ):
        reservation = Reservation(stock_item_id=uuid4(), order_id=uuid4(), quantity=1)
        inventory = AsyncMock()
        inventory.reserve.side_effect = [
            Outcome.success(reservation),
            TimeoutError("read timeout"),
        ]
        inventory.cancel.return_value = Outcome.success(reservation.cancelled())
        orchestrator = OrderSagaOrchestrator(order_store, catalogue, inventory)

        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order("Gina", [(laptop.id, 1), (mouse.id, 1)])

        assert isinstance(exc_info.value.cause, TransportError)
        inventory.cancel.assert_awaited_once_with(reservation.id)


class TestValidation:
    @pytest.mark.parametrize("name", ["", "   "])
    async def test_blank_customer_name(self, orchestrator, laptop, name):
        with pytest.raises(InvalidRequest):
            await orchestrator.create_order(name, [(laptop.id, 1)])

    async def test_empty_items(self, orchestrator, order_store):
        with pytest.raises(InvalidRequest):
            await orchestrator.create_order("Alice", [])

        assert await orchestrator.list_orders() == []

    async def test_non_positive_quantity(self, orchestrator, laptop):
        with pytest.raises(InvalidRequest):
            await orchestrator.create_order("Alice", [(laptop.id, 0)])

    async def test_repeated_product_is_rejected(self, orchestrator, ledger, laptop):
        await ledger.add_stock(laptop.id, 10)

        with pytest.raises(InvalidRequest):
            await orchestrator.create_order("Alice", [(laptop.id, 1), (laptop.id, 2)])

        assert await orchestrator.list_orders() == []
        stock = await ledger.get_stock(laptop.id)
        assert stock.quantity_available == 10
        assert stock.quantity_reserved == 0


class TestOrderQueries:
    async def test_get_unknown_order(self, orchestrator):
        with pytest.raises(OrderNotFound):
            await orchestrator.get_order(uuid4())

    async def test_list_includes_failed_orders(self, orchestrator, ledger, laptop):
        await ledger.add_stock(laptop.id, 1)
        confirmed = await orchestrator.create_order("Alice", [(laptop.id, 1)])
        with pytest.raises(OrderCreationFailed) as exc_info:
            await orchestrator.create_order("Bob", [(laptop.id, 1)])

        orders = {o.id: o.status for o in await orchestrator.list_orders()}

        assert orders == {
            confirmed.id: OrderStatus.CONFIRMED,
            exc_info.value.order_id: OrderStatus.FAILED,
        }


class TestSagaEvents:
    async def test_successful_saga_publishes_completion(
        self, orchestrator, ledger, laptop, redis
    ):
        await ledger.add_stock(laptop.id, 1)

        order = await orchestrator.create_order("Alice", [(laptop.id, 1)])

        order_events = [e["event_type"] for e in published(redis, "order_events")]
        assert order_events == ["OrderCreated", "OrderConfirmed"]
        [saga_event] = published(redis, "saga_events")
        assert saga_event["event_type"] == "SagaCompleted"
        assert saga_event["data"]["order_id"] == str(order.id)

    async def test_compensated_saga_publishes_failure(
        self, orchestrator, ledger, laptop, mouse, redis
    ):
        await ledger.add_stock(laptop.id, 1)

        with pytest.raises(OrderCreationFailed):
            await orchestrator.create_order("Alice", [(laptop.id, 1), (mouse.id, 1)])

        order_events = [e["event_type"] for e in published(redis, "order_events")]
        assert order_events == ["OrderCreated", "OrderFailed"]
        [saga_event] = published(redis, "saga_events")
        assert saga_event["event_type"] == "SagaCompensated"

    async def test_pricing_failure_publishes_saga_failed(
        self, orchestrator, redis
    ):
        with pytest.raises(OrderCreationFailed):
            await orchestrator.create_order("Alice", [(uuid4(), 1)])

        [saga_event] = published(redis, "saga_events")
        assert saga_event["event_type"] == "SagaFailed"

    async def test_redis_outage_does_not_fail_saga(
        self, orchestrator, ledger, laptop, redis
    ):
        from redis.exceptions import ConnectionError as RedisConnectionError

        await ledger.add_stock(laptop.id, 1)
        redis.publish.side_effect = RedisConnectionError("redis down")

        order = await orchestrator.create_order("Alice", [(laptop.id, 1)])

        assert order.status is OrderStatus.CONFIRMED
