"""
Inventory — 在庫台帳 (Stock Ledger / CQRS Write 側)

在庫の追加・引き当て(Reserve)・取り消し(Cancel)を処理する。

楽観的ロック:
  1. StockItem を読み、バージョンを覚えておく
  2. 新しい数量を計算する
  3. バージョンが変わっていない場合だけ書き込む
  競合したら 1 から読み直す。再試行回数には上限があり、
  使い切ると ConcurrentModification になる。

冪等性:
  - 同じ (在庫, 注文) の引き当ては既存の Reservation をそのまま返す
  - 取り消し済みの Reservation の取り消しは何もせずに返す
  どちらも at-least-once な再送に対して安全。
"""

import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from ..errors import (
    ConcurrentModification,
    InsufficientStock,
    InvalidRequest,
    ProductNotTracked,
    ReservationNotFound,
)
from ..messaging import INVENTORY_CHANNEL, EventPublisher
from ..outcome import Outcome
from ..retry import RetryPolicy
from .aggregate import Reservation, StockItem, utcnow
from .events import (
    ReservationCancelled,
    StockAdded,
    StockReservationFailed,
    StockReserved,
)
from .store import InventoryStore, VersionConflict

logger = logging.getLogger(__name__)


class StockLedger:
    def __init__(
        self,
        store: InventoryStore,
        publisher: EventPublisher | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.store = store
        self.publisher = publisher or EventPublisher()
        self.retry = retry or RetryPolicy()

    # ── コマンド ─────────────────────────────────

    async def add_stock(self, product_id: UUID, quantity: int) -> StockItem:
        """
        在庫追加コマンド

        在庫レコードがなければ作成する。同時に作成されて
        product_id の一意制約に当たった場合は、再試行で加算に切り替わる。
        """
        if quantity <= 0:
            raise InvalidRequest(f"quantity must be positive, got {quantity}")

        async def attempt() -> Outcome[StockItem]:
            item = await self.store.get_stock_by_product(product_id)
            if item is None:
                stored = await self.store.insert_stock_item(
                    StockItem(product_id=product_id, quantity_available=quantity)
                )
            else:
                stored = await self.store.update_stock_item(
                    item.restocked(quantity), item.version
                )
            await self.publisher.publish(
                INVENTORY_CHANNEL,
                StockAdded(
                    product_id=product_id,
                    stock_item_id=stored.id,
                    quantity=quantity,
                    quantity_available=stored.quantity_available,
                    timestamp=utcnow(),
                ),
            )
            return Outcome.success(stored)

        return (await self._retrying(product_id, attempt)).unwrap()

    async def reserve(
        self, product_id: UUID, order_id: UUID, quantity: int
    ) -> Outcome[Reservation]:
        """
        在庫引き当てコマンド

        1. 在庫レコードを読む (なければ ProductNotTracked)
        2. 同じ注文の引き当てが既にあればそれを返す
        3. 在庫不足なら InsufficientStock
        4. 在庫数の更新と Reservation の作成を条件付きでコミット
        """
        if quantity <= 0:
            return Outcome.failure(
                InvalidRequest(f"quantity must be positive, got {quantity}")
            )

        async def attempt() -> Outcome[Reservation]:
            item = await self.store.get_stock_by_product(product_id)
            if item is None:
                return Outcome.failure(ProductNotTracked(product_id))

            existing = await self.store.find_reservation(item.id, order_id)
            if existing is not None:
                logger.debug(
                    "Reservation %s already exists for order %s", existing.id, order_id
                )
                return Outcome.success(existing)

            if not item.can_reserve(quantity):
                await self.publisher.publish(
                    INVENTORY_CHANNEL,
                    StockReservationFailed(
                        product_id=product_id,
                        order_id=order_id,
                        quantity_requested=quantity,
                        quantity_available=item.quantity_available,
                        timestamp=utcnow(),
                    ),
                )
                return Outcome.failure(
                    InsufficientStock(product_id, quantity, item.quantity_available)
                )

            _, reservation = await self.store.commit_reservation(
                item.reserved(quantity),
                item.version,
                Reservation(stock_item_id=item.id, order_id=order_id, quantity=quantity),
            )
            await self.publisher.publish(
                INVENTORY_CHANNEL,
                StockReserved(
                    product_id=product_id,
                    order_id=order_id,
                    reservation_id=reservation.id,
                    quantity=quantity,
                    timestamp=reservation.created_at,
                ),
            )
            return Outcome.success(reservation)

        return await self._retrying(product_id, attempt)

    async def cancel(self, reservation_id: UUID) -> Outcome[Reservation]:
        """
        引き当て取り消しコマンド（Saga の補償トランザクション）

        取り消し済みなら在庫を戻さずにそのまま返す。
        """

        async def attempt() -> Outcome[Reservation]:
            reservation = await self.store.get_reservation(reservation_id)
            if reservation is None:
                return Outcome.failure(ReservationNotFound(reservation_id))
            if not reservation.is_active:
                return Outcome.success(reservation)

            item = await self.store.get_stock_item(reservation.stock_item_id)
            if item is None:
                return Outcome.failure(ProductNotTracked(reservation.stock_item_id))

            _, cancelled = await self.store.commit_cancellation(
                item.released(reservation.quantity),
                item.version,
                reservation.cancelled(),
            )
            await self.publisher.publish(
                INVENTORY_CHANNEL,
                ReservationCancelled(
                    product_id=item.product_id,
                    order_id=cancelled.order_id,
                    reservation_id=cancelled.id,
                    quantity=cancelled.quantity,
                    timestamp=utcnow(),
                ),
            )
            return Outcome.success(cancelled)

        return await self._retrying(reservation_id, attempt)

    # ── クエリ ───────────────────────────────────

    async def get_stock(self, product_id: UUID) -> StockItem:
        item = await self.store.get_stock_by_product(product_id)
        if item is None:
            raise ProductNotTracked(product_id)
        return item

    async def get_reservation(self, reservation_id: UUID) -> Reservation:
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        return reservation

    async def find_reservation(
        self, product_id: UUID, order_id: UUID
    ) -> Reservation | None:
        """注文に対する商品の引き当てを探す（監査用）"""
        item = await self.store.get_stock_by_product(product_id)
        if item is None:
            return None
        return await self.store.find_reservation(item.id, order_id)

    # ── 楽観的ロックの再試行 ─────────────────────

    async def _retrying(
        self,
        resource_id: UUID,
        attempt: Callable[[], Awaitable[Outcome]],
    ) -> Outcome:
        max_attempts = self.retry.max_attempts
        for n in range(1, max_attempts + 1):
            try:
                return await attempt()
            except VersionConflict as e:
                logger.debug(
                    "Version conflict on %s (attempt %d/%d): %s",
                    resource_id, n, max_attempts, e,
                )
                if n < max_attempts:
                    await self.retry.backoff(n)

        logger.warning(
            "Giving up on %s after %d conflicting attempts", resource_id, max_attempts
        )
        return Outcome.failure(ConcurrentModification(resource_id, max_attempts))
