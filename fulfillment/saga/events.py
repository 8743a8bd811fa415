"""
Saga — イベント定義

Saga の結果。saga_events チャネルに saga_log と一緒に発行される。
"""

from uuid import UUID

from pydantic import BaseModel


class SagaCompleted(BaseModel):
    """全ステップ成功"""
    order_id: UUID
    saga_log: list[dict]


class SagaCompensated(BaseModel):
    """引き当て失敗 → 補償を実行した"""
    order_id: UUID
    saga_log: list[dict]


class SagaFailed(BaseModel):
    """価格取得で失敗した（補償不要）"""
    order_id: UUID
    saga_log: list[dict]
