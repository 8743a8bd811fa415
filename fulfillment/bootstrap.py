"""
Fulfillment — 組み立て

設定からストア・クライアント・オーケストレーターを組み立てる。
接続 (DB エンジン・Redis) は fulfillment_services() を抜けるときに閉じる。
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .db import create_schema, make_engine, make_session_factory
from .inventory.client import InventoryServiceClient
from .inventory.commands import StockLedger
from .inventory.store import InMemoryInventoryStore, SqlInventoryStore
from .log import configure_logging
from .messaging import EventPublisher
from .order.store import InMemoryOrderStore, SqlOrderStore
from .product.client import ProductServiceClient
from .retry import RetryPolicy
from .saga.orchestrator import OrderSagaOrchestrator
from .saga.ports import PricingLookup

logger = logging.getLogger(__name__)


@dataclass
class FulfillmentServices:
    # Saga が引き当てに使う在庫台帳 (リモート時は Inventory Service クライアント)
    ledger: StockLedger | InventoryServiceClient
    orchestrator: OrderSagaOrchestrator
    engine: AsyncEngine | None = None
    redis: aioredis.Redis | None = None


@asynccontextmanager
async def fulfillment_services(
    settings: Settings | None = None,
    pricing: PricingLookup | None = None,
) -> AsyncIterator[FulfillmentServices]:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    redis = None
    if settings.redis_url:
        redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    publisher = EventPublisher(redis)

    engine = None
    if settings.database_url:
        engine = make_engine(settings.database_url)
        await create_schema(engine)
        session_factory = make_session_factory(engine)
        inventory_store = SqlInventoryStore(session_factory)
        order_store = SqlOrderStore(session_factory)
    else:
        logger.info("DATABASE_URL not set, using in-memory stores")
        inventory_store = InMemoryInventoryStore()
        order_store = InMemoryOrderStore()

    if settings.remote_inventory:
        ledger = InventoryServiceClient(
            settings.inventory_service_url, timeout=settings.http_timeout
        )
    else:
        ledger = StockLedger(
            inventory_store, publisher, RetryPolicy.from_settings(settings)
        )

    if pricing is None:
        pricing = ProductServiceClient(
            settings.product_service_url, timeout=settings.http_timeout
        )

    orchestrator = OrderSagaOrchestrator(order_store, pricing, ledger, publisher)
    try:
        yield FulfillmentServices(ledger, orchestrator, engine, redis)
    finally:
        if redis is not None:
            await redis.aclose()
        if engine is not None:
            await engine.dispose()
