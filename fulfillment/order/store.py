"""
Order — 注文ストア

注文は 1 つの Saga だけが更新するため、楽観的ロックは不要。
保存は丸ごと上書き (明細は注文と一緒に作り直す)。
"""

import asyncio
import copy
from typing import Protocol
from uuid import UUID

from sqlalchemy import DateTime, Numeric, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import as_datetime, as_decimal, as_uuid
from .aggregate import LineItem, Order, OrderStatus


class OrderStore(Protocol):
    async def save(self, order: Order) -> None: ...

    async def get(self, order_id: UUID) -> Order | None: ...

    async def list_all(self) -> list[Order]: ...


class InMemoryOrderStore:
    def __init__(self) -> None:
        self._orders: dict[UUID, Order] = {}

    async def save(self, order: Order) -> None:
        await asyncio.sleep(0)
        self._orders[order.id] = copy.deepcopy(order)

    async def get(self, order_id: UUID) -> Order | None:
        await asyncio.sleep(0)
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def list_all(self) -> list[Order]:
        await asyncio.sleep(0)
        orders = sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders]


_MONEY = Numeric(19, 4)

_UPSERT_ORDER = text("""
    INSERT INTO orders (id, customer_name, status, total_amount, created_at)
    VALUES (:id, :customer_name, :status, :total, :created_at)
    ON CONFLICT (id) DO UPDATE
    SET status = excluded.status, total_amount = excluded.total_amount
""").bindparams(
    bindparam("total", type_=_MONEY),
    bindparam("created_at", type_=DateTime(timezone=True)),
)

_INSERT_LINE_ITEM = text("""
    INSERT INTO line_items
        (id, order_id, position, product_id, product_name, quantity, unit_price)
    VALUES
        (:id, :order_id, :position, :product_id, :product_name, :quantity, :unit_price)
""").bindparams(bindparam("unit_price", type_=_MONEY))


class SqlOrderStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, order: Order) -> None:
        async with self.session_factory() as session:
            await session.execute(
                _UPSERT_ORDER,
                {
                    "id": str(order.id),
                    "customer_name": order.customer_name,
                    "status": order.status.value,
                    "total": order.total_amount,
                    "created_at": order.created_at,
                },
            )
            await session.execute(
                text("DELETE FROM line_items WHERE order_id = :order_id"),
                {"order_id": str(order.id)},
            )
            for position, item in enumerate(order.line_items):
                await session.execute(
                    _INSERT_LINE_ITEM,
                    {
                        "id": str(item.id),
                        "order_id": str(order.id),
                        "position": position,
                        "product_id": str(item.product_id),
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                    },
                )
            await session.commit()

    async def get(self, order_id: UUID) -> Order | None:
        async with self.session_factory() as session:
            result = await session.execute(
                text("SELECT * FROM orders WHERE id = :id"),
                {"id": str(order_id)},
            )
            row = result.fetchone()
            if not row:
                return None
            return await self._load(session, row)

    async def list_all(self) -> list[Order]:
        async with self.session_factory() as session:
            result = await session.execute(
                text("SELECT * FROM orders ORDER BY created_at DESC"),
            )
            return [await self._load(session, row) for row in result.fetchall()]

    async def _load(self, session: AsyncSession, row) -> Order:
        result = await session.execute(
            text("""
                SELECT id, product_id, product_name, quantity, unit_price
                FROM line_items
                WHERE order_id = :order_id
                ORDER BY position ASC
            """),
            {"order_id": str(row.id)},
        )
        line_items = [
            LineItem(
                id=as_uuid(li.id),
                product_id=as_uuid(li.product_id),
                product_name=li.product_name,
                quantity=li.quantity,
                unit_price=as_decimal(li.unit_price),
            )
            for li in result.fetchall()
        ]
        return Order(
            id=as_uuid(row.id),
            customer_name=row.customer_name,
            status=OrderStatus(row.status),
            total_amount=as_decimal(row.total_amount),
            line_items=line_items,
            created_at=as_datetime(row.created_at),
        )
