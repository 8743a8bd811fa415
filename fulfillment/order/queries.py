"""
Order — クエリハンドラ (Read 側)

Saga を経由しない単純な読み取り。
"""

from uuid import UUID

from ..errors import OrderNotFound
from .aggregate import Order
from .store import OrderStore


async def get_order(store: OrderStore, order_id: UUID) -> Order:
    order = await store.get(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def list_orders(store: OrderStore) -> list[Order]:
    """全注文を新しい順に返す。"""
    return await store.list_all()
