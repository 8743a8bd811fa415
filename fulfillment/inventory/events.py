"""
Inventory — イベント定義

在庫ドメインで発生するイベント。inventory_events チャネルに発行される。
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class StockAdded(BaseModel):
    """在庫が追加された"""
    product_id: UUID
    stock_item_id: UUID
    quantity: int
    quantity_available: int
    timestamp: datetime


class StockReserved(BaseModel):
    """在庫が引き当てられた"""
    product_id: UUID
    order_id: UUID
    reservation_id: UUID
    quantity: int
    timestamp: datetime


class StockReservationFailed(BaseModel):
    """在庫引き当てが失敗した（在庫不足）"""
    product_id: UUID
    order_id: UUID
    quantity_requested: int
    quantity_available: int
    timestamp: datetime


class ReservationCancelled(BaseModel):
    """引き当てが取り消された（補償トランザクション）"""
    product_id: UUID
    order_id: UUID
    reservation_id: UUID
    quantity: int
    timestamp: datetime
