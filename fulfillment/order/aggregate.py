"""
Order — 注文集約 (Order Aggregate)

Saga の対象であり、結果の監査記録でもある。

状態遷移:
    CREATED → CONFIRMED  (全明細の在庫引き当て成功)
    CREATED → FAILED     (価格取得または在庫引き当ての失敗)
CONFIRMED / FAILED は終端状態で、それ以降は変更できない。
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from ..errors import InvalidRequest, InvalidStateTransition
from ..inventory.aggregate import utcnow


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


@dataclass
class LineItem:
    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise InvalidRequest(f"quantity must be positive, got {self.quantity}")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Order:
    customer_name: str
    status: OrderStatus = OrderStatus.CREATED
    total_amount: Decimal | None = None
    line_items: list[LineItem] = field(default_factory=list)
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status is not OrderStatus.CREATED

    def add_line_item(self, line_item: LineItem) -> None:
        self._ensure_open()
        self.line_items.append(line_item)

    def calculate_total(self) -> Decimal:
        """明細の小計を合計して total_amount に設定する。"""
        self._ensure_open()
        self.total_amount = sum(
            (item.subtotal for item in self.line_items), Decimal("0")
        )
        return self.total_amount

    def confirm(self) -> None:
        self._ensure_open()
        self.status = OrderStatus.CONFIRMED

    def fail(self) -> None:
        self._ensure_open()
        self.status = OrderStatus.FAILED

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Order {self.id} is already {self.status.value}"
            )
