"""
Shared fixtures: in-memory stores, a ledger without backoff delays,
a catalogue and an orchestrator wired to all of them.
"""

from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from fulfillment.inventory.commands import StockLedger
from fulfillment.inventory.store import InMemoryInventoryStore
from fulfillment.messaging import EventPublisher
from fulfillment.order.store import InMemoryOrderStore
from fulfillment.product.client import InMemoryCatalogue
from fulfillment.retry import NO_DELAY
from fulfillment.saga.orchestrator import OrderSagaOrchestrator


@pytest.fixture
def redis():
    """Stand-in for redis.asyncio.Redis that records publish calls."""
    return AsyncMock()


@pytest.fixture
def publisher(redis):
    return EventPublisher(redis)


@pytest.fixture
def inventory_store():
    return InMemoryInventoryStore()


@pytest.fixture
def ledger(inventory_store, publisher):
    return StockLedger(inventory_store, publisher, NO_DELAY)


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def catalogue():
    return InMemoryCatalogue()


@pytest.fixture
def orchestrator(order_store, catalogue, ledger, publisher):
    return OrderSagaOrchestrator(order_store, catalogue, ledger, publisher)


@pytest.fixture
def laptop(catalogue):
    return catalogue.add(uuid4(), "Laptop", Decimal("999.99"))


@pytest.fixture
def mouse(catalogue):
    return catalogue.add(uuid4(), "Mouse", Decimal("29.99"))
