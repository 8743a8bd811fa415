"""
Fulfillment — エラー定義

在庫・価格・注文 Saga で発生するエラー。
ビジネス上の失敗 (在庫不足・未登録商品) は Outcome として返され、
呼び出し側が必要なときだけ unwrap() で例外として送出する。
"""

from uuid import UUID


class FulfillmentError(Exception):
    """すべてのドメインエラーの基底クラス"""


class InvalidRequest(FulfillmentError):
    """リクエストが不正 (空の明細・空の顧客名・0 以下の数量)"""


class ProductNotFound(FulfillmentError):
    """商品サービスに商品が存在しない"""

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ProductNotTracked(FulfillmentError):
    """在庫台帳に商品の在庫レコードが存在しない"""

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(f"Stock item not found for product: {product_id}")


class InsufficientStock(FulfillmentError):
    """在庫不足"""

    def __init__(self, product_id: UUID, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class ConcurrentModification(FulfillmentError):
    """楽観的ロックの再試行回数を使い切った"""

    def __init__(self, resource_id: UUID, attempts: int):
        self.resource_id = resource_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of {resource_id} after {attempts} attempts"
        )


class ReservationNotFound(FulfillmentError):
    def __init__(self, reservation_id: UUID):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation not found: {reservation_id}")


class TransportError(FulfillmentError):
    """リモートサービス呼び出しの通信エラー (タイムアウト・5xx 等)"""


class OrderNotFound(FulfillmentError):
    def __init__(self, order_id: UUID):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidStateTransition(FulfillmentError):
    """終端状態 (CONFIRMED / FAILED) の注文を変更しようとした"""


class OrderCreationFailed(FulfillmentError):
    """
    注文 Saga の失敗。

    cause には元の失敗 (価格取得または在庫引き当て) を保持する。
    補償処理の失敗がここに入ることはない。
    """

    def __init__(
        self,
        order_id: UUID,
        cause: Exception,
        saga_log: list[dict] | None = None,
    ):
        self.order_id = order_id
        self.cause = cause
        self.saga_log = saga_log or []
        super().__init__(f"Failed to create order {order_id}: {cause}")
