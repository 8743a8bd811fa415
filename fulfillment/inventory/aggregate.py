"""
Inventory — 在庫集約 (StockItem / Reservation)

StockItem は商品ごとの引当可能数と引当済数を持つ。
reserve / release は数量計算だけを行い、保存 (楽観的ロック) は
StockLedger の責務。

  quantity_available + quantity_reserved は reserve / release の組で保存される。
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


@dataclass
class StockItem:
    product_id: UUID
    quantity_available: int
    quantity_reserved: int = 0
    version: int = 0
    id: UUID = field(default_factory=uuid4)
    last_updated: datetime = field(default_factory=utcnow)

    def can_reserve(self, quantity: int) -> bool:
        return quantity <= self.quantity_available

    def reserved(self, quantity: int) -> "StockItem":
        """引き当て後の新しい状態を返す。在庫チェックは呼び出し側で行う。"""
        if not self.can_reserve(quantity):
            raise ValueError(
                f"Cannot reserve {quantity} units. "
                f"Only {self.quantity_available} available."
            )
        return replace(
            self,
            quantity_available=self.quantity_available - quantity,
            quantity_reserved=self.quantity_reserved + quantity,
            last_updated=utcnow(),
        )

    def released(self, quantity: int) -> "StockItem":
        return replace(
            self,
            quantity_available=self.quantity_available + quantity,
            quantity_reserved=self.quantity_reserved - quantity,
            last_updated=utcnow(),
        )

    def restocked(self, quantity: int) -> "StockItem":
        return replace(
            self,
            quantity_available=self.quantity_available + quantity,
            last_updated=utcnow(),
        )


@dataclass
class Reservation:
    """
    引き当て記録。(stock_item_id, order_id) ごとに 1 件だけ存在する。

    状態遷移:
        PENDING → CANCELLED  (補償・明示的なキャンセル)
    """

    stock_item_id: UUID
    order_id: UUID
    quantity: int
    status: ReservationStatus = ReservationStatus.PENDING
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status is not ReservationStatus.CANCELLED

    def cancelled(self) -> "Reservation":
        return replace(self, status=ReservationStatus.CANCELLED)
