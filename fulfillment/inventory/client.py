"""
Inventory — Inventory Service クライアント

在庫台帳が別サービスとして動いている場合に、Saga から
HTTP 経由で引き当て・取り消しを呼び出す。
StockLedger と同じく結果を Outcome で返すので、
オーケストレーターはどちらを使っているかを意識しない。

  409 → InsufficientStock
  404 → ProductNotTracked / ReservationNotFound
  それ以外の HTTP エラー・タイムアウト → TransportError
"""

import re
from datetime import datetime
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..errors import (
    InsufficientStock,
    ProductNotTracked,
    ReservationNotFound,
    TransportError,
)
from ..outcome import Outcome
from .aggregate import Reservation, ReservationStatus, StockItem

_AVAILABLE = re.compile(r"available (\d+)")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReservationResponse(_CamelModel):
    id: UUID
    stock_item_id: UUID
    order_id: UUID
    quantity: int
    status: ReservationStatus
    created_at: datetime

    def to_reservation(self) -> Reservation:
        return Reservation(**self.model_dump())


class StockItemResponse(_CamelModel):
    id: UUID
    product_id: UUID
    quantity_available: int
    quantity_reserved: int
    last_updated: datetime | None = None

    def to_stock_item(self) -> StockItem:
        item = StockItem(
            id=self.id,
            product_id=self.product_id,
            quantity_available=self.quantity_available,
            quantity_reserved=self.quantity_reserved,
        )
        if self.last_updated is not None:
            item.last_updated = self.last_updated
        return item


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if not isinstance(body, dict):
        return resp.text
    return str(body.get("detail", resp.text))


class InventoryServiceClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    async def reserve(
        self, product_id: UUID, order_id: UUID, quantity: int
    ) -> Outcome[Reservation]:
        """在庫引き当てを依頼する"""
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/api/inventory/reservations",
                    json={
                        "productId": str(product_id),
                        "orderId": str(order_id),
                        "quantity": quantity,
                    },
                )
        except httpx.HTTPError as e:
            return Outcome.failure(TransportError(f"reserve {product_id}: {e}"))

        if resp.status_code == 409:
            match = _AVAILABLE.search(_detail(resp))
            available = int(match.group(1)) if match else 0
            return Outcome.failure(InsufficientStock(product_id, quantity, available))
        if resp.status_code == 404:
            return Outcome.failure(ProductNotTracked(product_id))
        if resp.is_error:
            return Outcome.failure(
                TransportError(f"reserve {product_id}: HTTP {resp.status_code}")
            )
        return Outcome.success(
            ReservationResponse.model_validate(resp.json()).to_reservation()
        )

    async def cancel(self, reservation_id: UUID) -> Outcome[Reservation]:
        """引き当ての取り消しを依頼する（補償トランザクション）"""
        try:
            async with self._client() as client:
                resp = await client.delete(
                    f"/api/inventory/reservations/{reservation_id}"
                )
        except httpx.HTTPError as e:
            return Outcome.failure(TransportError(f"cancel {reservation_id}: {e}"))

        if resp.status_code == 404:
            return Outcome.failure(ReservationNotFound(reservation_id))
        if resp.is_error:
            return Outcome.failure(
                TransportError(f"cancel {reservation_id}: HTTP {resp.status_code}")
            )
        return Outcome.success(
            ReservationResponse.model_validate(resp.json()).to_reservation()
        )

    async def add_stock(self, product_id: UUID, quantity: int) -> StockItem:
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/api/inventory/stock",
                    json={"productId": str(product_id), "quantity": quantity},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"add stock {product_id}: {e}") from e
        return StockItemResponse.model_validate(resp.json()).to_stock_item()

    async def get_stock(self, product_id: UUID) -> StockItem:
        try:
            async with self._client() as client:
                resp = await client.get(f"/api/inventory/stock/{product_id}")
                if resp.status_code == 404:
                    raise ProductNotTracked(product_id)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"get stock {product_id}: {e}") from e
        return StockItemResponse.model_validate(resp.json()).to_stock_item()
