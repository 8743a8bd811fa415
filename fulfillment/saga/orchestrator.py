"""
Saga Orchestrator — 注文作成 Saga

Saga パターン（オーケストレーション型）:
  価格取得と在庫引き当ての 2 フェーズを順番に実行する。
  サービス間で共有トランザクションはないので、途中で失敗したら
  成功済みの引き当てを補償トランザクションで取り消す。

  フロー:
  ┌─────────────────────────────────────────────────────────┐
  │  1. 注文を CREATED で作成                                 │
  │  2. Phase 1: 明細ごとに価格を取得 → 合計金額を計算         │
  │     └─ 失敗 → 注文を FAILED (引き当て前なので補償なし)     │
  │  3. Phase 2: 明細ごとに在庫を引き当て (リクエスト順)       │
  │     ├─ 全て成功 → 注文を CONFIRMED                        │
  │     └─ 失敗 → 成功済みの引き当てを取り消し (補償)          │
  │              → 注文を FAILED                              │
  └─────────────────────────────────────────────────────────┘

明細は並列に処理しない。補償の時点で「どの引き当てが成功済みか」を
正確に知る必要があるため。
補償自体の失敗はログに残すだけで、呼び出し側には元の失敗を返す。
その場合の在庫は引き当てられたまま残る (自動での再調整はしない)。
"""

import logging
from collections.abc import Awaitable, Sequence
from datetime import datetime, timezone
from uuid import UUID

from ..errors import (
    FulfillmentError,
    InvalidRequest,
    OrderCreationFailed,
    TransportError,
)
from ..inventory.aggregate import Reservation
from ..messaging import ORDER_CHANNEL, SAGA_CHANNEL, EventPublisher
from ..order import queries
from ..order.aggregate import LineItem, Order
from ..order.events import OrderConfirmed, OrderCreated, OrderFailed
from ..order.store import OrderStore
from ..outcome import Outcome
from .events import SagaCompensated, SagaCompleted, SagaFailed
from .ports import PricingLookup, StockReservations

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderSagaOrchestrator:
    """注文 Saga のオーケストレーター"""

    def __init__(
        self,
        orders: OrderStore,
        pricing: PricingLookup,
        inventory: StockReservations,
        publisher: EventPublisher | None = None,
    ):
        self.orders = orders
        self.pricing = pricing
        self.inventory = inventory
        self.publisher = publisher or EventPublisher()

    async def create_order(
        self,
        customer_name: str,
        items: Sequence[tuple[UUID, int]],
    ) -> Order:
        """
        Saga を実行する。

        成功すると CONFIRMED の注文を返す。
        失敗すると注文を FAILED で保存し、OrderCreationFailed を送出する。
        """
        requested = self._validate(customer_name, items)
        saga_log: list[dict] = []

        order = Order(customer_name=customer_name.strip())
        await self.orders.save(order)
        await self.publisher.publish(
            ORDER_CHANNEL,
            OrderCreated(
                order_id=order.id,
                customer_name=order.customer_name,
                timestamp=order.created_at,
            ),
        )
        logger.info("Saga started for order %s (%d items)", order.id, len(requested))

        # ── Phase 1: 価格を取得 ──────────────────────
        for product_id, quantity in requested:
            step = self._begin(saga_log, "LookupProduct", product_id)
            outcome = await self._attempt(
                self.pricing.lookup_product(product_id),
                f"lookup {product_id}",
            )
            if not outcome.ok:
                self._finish(step, outcome.error)
                raise await self._fail(order, outcome.error, saga_log, SagaFailed)
            self._finish(step)

            product = outcome.value
            order.add_line_item(
                LineItem(
                    product_id=product_id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=product.price,
                )
            )

        order.calculate_total()
        await self.orders.save(order)

        # ── Phase 2: 在庫を引き当て ──────────────────
        reservations: list[Reservation] = []
        for line_item in order.line_items:
            step = self._begin(saga_log, "ReserveStock", line_item.product_id)
            outcome = await self._attempt(
                self.inventory.reserve(
                    line_item.product_id, order.id, line_item.quantity
                ),
                f"reserve {line_item.product_id}",
            )
            if not outcome.ok:
                self._finish(step, outcome.error)
                logger.warning(
                    "Inventory reservation failed for order %s, "
                    "compensating %d successful reservations",
                    order.id, len(reservations),
                )
                await self._compensate(order, reservations, saga_log)
                raise await self._fail(
                    order, outcome.error, saga_log, SagaCompensated
                )
            self._finish(step)
            reservations.append(outcome.value)

        # ── 注文を確定 ───────────────────────────────
        order.confirm()
        await self.orders.save(order)
        await self.publisher.publish(
            ORDER_CHANNEL,
            OrderConfirmed(
                order_id=order.id, total_amount=order.total_amount, timestamp=_now()
            ),
        )
        await self.publisher.publish(
            SAGA_CHANNEL, SagaCompleted(order_id=order.id, saga_log=saga_log)
        )
        logger.info("Order %s confirmed, total %s", order.id, order.total_amount)
        return order

    async def get_order(self, order_id: UUID) -> Order:
        return await queries.get_order(self.orders, order_id)

    async def list_orders(self) -> list[Order]:
        return await queries.list_orders(self.orders)

    # ── 補償トランザクション ─────────────────────

    async def _compensate(
        self,
        order: Order,
        reservations: list[Reservation],
        saga_log: list[dict],
    ) -> None:
        """成功済みの引き当てを逆順に取り消す。失敗しても続行する。"""
        for reservation in reversed(reservations):
            step = self._begin(
                saga_log, "CancelReservation (COMPENSATING)", reservation.id
            )
            try:
                outcome = await self.inventory.cancel(reservation.id)
            except Exception as e:
                self._finish(step, e)
                logger.error(
                    "Failed to cancel reservation %s for order %s",
                    reservation.id, order.id, exc_info=True,
                )
                continue
            if not outcome.ok:
                self._finish(step, outcome.error)
                logger.error(
                    "Failed to cancel reservation %s for order %s: %s",
                    reservation.id, order.id, outcome.error,
                )
                continue
            self._finish(step)

    async def _fail(
        self,
        order: Order,
        cause: FulfillmentError,
        saga_log: list[dict],
        saga_event: type[SagaFailed] | type[SagaCompensated],
    ) -> OrderCreationFailed:
        order.fail()
        await self.orders.save(order)
        await self.publisher.publish(
            ORDER_CHANNEL,
            OrderFailed(order_id=order.id, reason=str(cause), timestamp=_now()),
        )
        await self.publisher.publish(
            SAGA_CHANNEL, saga_event(order_id=order.id, saga_log=saga_log)
        )
        logger.info("Order %s failed: %s", order.id, cause)

        error = OrderCreationFailed(order.id, cause, saga_log)
        error.__cause__ = cause
        return error

    # ── ヘルパー ─────────────────────────────────

    @staticmethod
    def _validate(
        customer_name: str, items: Sequence[tuple[UUID, int]]
    ) -> list[tuple[UUID, int]]:
        if not customer_name or not customer_name.strip():
            raise InvalidRequest("Customer name is required")
        if not items:
            raise InvalidRequest("Order must have at least one item")
        requested = list(items)
        seen: set[UUID] = set()
        for product_id, quantity in requested:
            if quantity <= 0:
                raise InvalidRequest(
                    f"Quantity must be positive for product {product_id}"
                )
            # 引き当ては (在庫, 注文) 単位なので、同じ商品は 1 明細にまとめてもらう
            if product_id in seen:
                raise InvalidRequest(
                    f"Product {product_id} appears more than once in the order"
                )
            seen.add(product_id)
        return requested

    @staticmethod
    async def _attempt(call: Awaitable[Outcome], description: str) -> Outcome:
        """リモート呼び出しの予期しない例外も、そのステップの失敗として扱う。"""
        try:
            return await call
        except FulfillmentError as e:
            return Outcome.failure(e)
        except Exception as e:
            error = TransportError(f"{description}: {e}")
            error.__cause__ = e
            return Outcome.failure(error)

    @staticmethod
    def _begin(saga_log: list[dict], action: str, target: UUID) -> dict:
        step = {
            "step": len(saga_log) + 1,
            "action": action,
            "target": str(target),
            "status": "EXECUTING",
            "timestamp": _now().isoformat(),
        }
        saga_log.append(step)
        return step

    @staticmethod
    def _finish(step: dict, error: Exception | None = None) -> None:
        if error is None:
            step["status"] = "COMPLETED"
        else:
            step["status"] = "FAILED"
            step["error"] = str(error)
