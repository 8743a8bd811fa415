"""
Order — イベント定義

注文の状態変化。order_events チャネルに発行される。
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class OrderCreated(BaseModel):
    """注文が作成された"""
    order_id: UUID
    customer_name: str
    timestamp: datetime


class OrderConfirmed(BaseModel):
    """注文が確定された（全明細の在庫引き当て成功）"""
    order_id: UUID
    total_amount: Decimal
    timestamp: datetime


class OrderFailed(BaseModel):
    """注文が失敗した（補償済み）"""
    order_id: UUID
    reason: str
    timestamp: datetime
