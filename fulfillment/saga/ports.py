"""
Saga — オーケストレーターが呼び出す外部サービスのインターフェース

ローカル実装 (StockLedger / InMemoryCatalogue) と
HTTP クライアント (InventoryServiceClient / ProductServiceClient) の
どちらも同じ形で結果を Outcome として返す。
"""

from typing import Protocol
from uuid import UUID

from ..inventory.aggregate import Reservation
from ..outcome import Outcome
from ..product.client import ProductInfo


class PricingLookup(Protocol):
    async def lookup_product(self, product_id: UUID) -> Outcome[ProductInfo]: ...


class StockReservations(Protocol):
    async def reserve(
        self, product_id: UUID, order_id: UUID, quantity: int
    ) -> Outcome[Reservation]: ...

    async def cancel(self, reservation_id: UUID) -> Outcome[Reservation]: ...
