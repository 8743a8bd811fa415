"""
Inventory — 在庫ストア (StockItem / Reservation の永続化)

どちらの実装も次の 2 点を保証する:

  1. 条件付き書き込み: 保存されているバージョンが expected_version と
     一致するときだけ StockItem を更新し、バージョンを 1 つ進める。
     一致しなければ VersionConflict → 呼び出し側が読み直して再試行する。
  2. (stock_item_id, order_id) の一意性: 同じ注文で同じ在庫を
     二重に引き当てようとすると VersionConflict になる。

引き当て・取り消しでは在庫数の更新と Reservation の書き込みを
1 回の操作でまとめてコミットする。
"""

import asyncio
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import as_datetime, as_uuid
from .aggregate import Reservation, ReservationStatus, StockItem


class VersionConflict(Exception):
    """条件付き書き込みが競合した"""


class InventoryStore(Protocol):
    async def get_stock_by_product(self, product_id: UUID) -> StockItem | None: ...

    async def get_stock_item(self, stock_item_id: UUID) -> StockItem | None: ...

    async def get_reservation(self, reservation_id: UUID) -> Reservation | None: ...

    async def find_reservation(
        self, stock_item_id: UUID, order_id: UUID
    ) -> Reservation | None: ...

    async def insert_stock_item(self, item: StockItem) -> StockItem: ...

    async def update_stock_item(
        self, item: StockItem, expected_version: int
    ) -> StockItem: ...

    async def commit_reservation(
        self, item: StockItem, expected_version: int, reservation: Reservation
    ) -> tuple[StockItem, Reservation]: ...

    async def commit_cancellation(
        self, item: StockItem, expected_version: int, reservation: Reservation
    ) -> tuple[StockItem, Reservation]: ...


# ── インメモリ実装 ───────────────────────────────


class InMemoryInventoryStore:
    """
    asyncio 用のインメモリストア。

    読み取りの前に必ず制御を手放すので、並行タスクの処理が交互に進む。
    書き込みは比較から反映まで await を挟まないため原子的。
    """

    def __init__(self) -> None:
        self._items: dict[UUID, StockItem] = {}
        self._by_product: dict[UUID, UUID] = {}
        self._reservations: dict[UUID, Reservation] = {}
        self._by_key: dict[tuple[UUID, UUID], UUID] = {}

    async def get_stock_by_product(self, product_id: UUID) -> StockItem | None:
        await asyncio.sleep(0)
        item_id = self._by_product.get(product_id)
        return replace(self._items[item_id]) if item_id is not None else None

    async def get_stock_item(self, stock_item_id: UUID) -> StockItem | None:
        await asyncio.sleep(0)
        item = self._items.get(stock_item_id)
        return replace(item) if item else None

    async def get_reservation(self, reservation_id: UUID) -> Reservation | None:
        await asyncio.sleep(0)
        reservation = self._reservations.get(reservation_id)
        return replace(reservation) if reservation else None

    async def find_reservation(
        self, stock_item_id: UUID, order_id: UUID
    ) -> Reservation | None:
        await asyncio.sleep(0)
        reservation_id = self._by_key.get((stock_item_id, order_id))
        if reservation_id is None:
            return None
        return replace(self._reservations[reservation_id])

    async def insert_stock_item(self, item: StockItem) -> StockItem:
        if item.product_id in self._by_product:
            raise VersionConflict(f"product {item.product_id} is already tracked")
        stored = replace(item, version=1)
        self._items[stored.id] = stored
        self._by_product[stored.product_id] = stored.id
        return replace(stored)

    async def update_stock_item(
        self, item: StockItem, expected_version: int
    ) -> StockItem:
        self._check_version(item.id, expected_version)
        stored = replace(item, version=expected_version + 1)
        self._items[stored.id] = stored
        return replace(stored)

    async def commit_reservation(
        self, item: StockItem, expected_version: int, reservation: Reservation
    ) -> tuple[StockItem, Reservation]:
        self._check_version(item.id, expected_version)
        key = (reservation.stock_item_id, reservation.order_id)
        if key in self._by_key:
            raise VersionConflict(f"reservation already exists for {key}")
        stored = replace(item, version=expected_version + 1)
        self._items[stored.id] = stored
        self._reservations[reservation.id] = replace(reservation)
        self._by_key[key] = reservation.id
        return replace(stored), replace(reservation)

    async def commit_cancellation(
        self, item: StockItem, expected_version: int, reservation: Reservation
    ) -> tuple[StockItem, Reservation]:
        self._check_version(item.id, expected_version)
        current = self._reservations.get(reservation.id)
        if current is None or not current.is_active:
            raise VersionConflict(f"reservation {reservation.id} is no longer active")
        stored = replace(item, version=expected_version + 1)
        self._items[stored.id] = stored
        self._reservations[reservation.id] = replace(reservation)
        return replace(stored), replace(reservation)

    def _check_version(self, stock_item_id: UUID, expected_version: int) -> None:
        current = self._items.get(stock_item_id)
        if current is None or current.version != expected_version:
            raise VersionConflict(
                f"stock item {stock_item_id} expected version {expected_version}"
            )


# ── SQL 実装 ─────────────────────────────────────

_TIMESTAMP = DateTime(timezone=True)

_SELECT_STOCK = """
    SELECT id, product_id, quantity_available, quantity_reserved, version, last_updated
    FROM stock_items
"""

_SELECT_RESERVATION = """
    SELECT id, stock_item_id, order_id, quantity, status, created_at
    FROM reservations
"""

_UPDATE_STOCK = text("""
    UPDATE stock_items
    SET quantity_available = :available,
        quantity_reserved = :reserved,
        version = version + 1,
        last_updated = :now
    WHERE id = :id AND version = :expected
""").bindparams(bindparam("now", type_=_TIMESTAMP))


def _row_to_stock(row) -> StockItem:
    return StockItem(
        id=as_uuid(row.id),
        product_id=as_uuid(row.product_id),
        quantity_available=row.quantity_available,
        quantity_reserved=row.quantity_reserved,
        version=row.version,
        last_updated=as_datetime(row.last_updated),
    )


def _row_to_reservation(row) -> Reservation:
    return Reservation(
        id=as_uuid(row.id),
        stock_item_id=as_uuid(row.stock_item_id),
        order_id=as_uuid(row.order_id),
        quantity=row.quantity,
        status=ReservationStatus(row.status),
        created_at=as_datetime(row.created_at),
    )


class SqlInventoryStore:
    """
    SQLAlchemy (async) による実装。

    楽観的ロックは UPDATE ... WHERE version = :expected の更新件数で判定し、
    二重引き当ては UNIQUE 制約違反で検知する。
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_stock_by_product(self, product_id: UUID) -> StockItem | None:
        async with self.session_factory() as session:
            result = await session.execute(
                text(_SELECT_STOCK + " WHERE product_id = :pid"),
                {"pid": str(product_id)},
            )
            row = result.fetchone()
            return _row_to_stock(row) if row else None

    async def get_stock_item(self, stock_item_id: UUID) -> StockItem | None:
        async with self.session_factory() as session:
            result = await session.execute(
                text(_SELECT_STOCK + " WHERE id = :id"),
                {"id": str(stock_item_id)},
            )
            row = result.fetchone()
            return _row_to_stock(row) if row else None

    async def get_reservation(self, reservation_id: UUID) -> Reservation | None:
        async with self.session_factory() as session:
            result = await session.execute(
                text(_SELECT_RESERVATION + " WHERE id = :id"),
                {"id": str(reservation_id)},
            )
            row = result.fetchone()
            return _row_to_reservation(row) if row else None

    async def find_reservation(
        self, stock_item_id: UUID, order_id: UUID
    ) -> Reservation | None:
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    _SELECT_RESERVATION
                    + " WHERE stock_item_id = :sid AND order_id = :oid"
                ),
                {"sid": str(stock_item_id), "oid": str(order_id)},
            )
            row = result.fetchone()
            return _row_to_reservation(row) if row else None

    async def insert_stock_item(self, item: StockItem) -> StockItem:
        async with self.session_factory() as session:
            try:
                await session.execute(
                    text("""
                        INSERT INTO stock_items
                            (id, product_id, quantity_available, quantity_reserved, version, last_updated)
                        VALUES
                            (:id, :pid, :available, :reserved, 1, :now)
                    """).bindparams(bindparam("now", type_=_TIMESTAMP)),
                    {
                        "id": str(item.id),
                        "pid": str(item.product_id),
                        "available": item.quantity_available,
                        "reserved": item.quantity_reserved,
                        "now": item.last_updated,
                    },
                )
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise VersionConflict(
                    f"product {item.product_id} is already tracked"
                ) from e
        return replace(item, version=1)

    async def update_stock_item(
        self, item: StockItem, expected_version: int
    ) -> StockItem:
        async with self.session_factory() as session:
            await self._conditional_update(session, item, expected_version)
            await session.commit()
        return replace(item, version=expected_version + 1)

    async def commit_reservation(
        self, item: StockItem, expected_version: int, reservation: Reservation
    ) -> tuple[StockItem, Reservation]:
        async with self.session_factory() as session:
            await self._conditional_update(session, item, expected_version)
            try:
                await session.execute(
                    text("""
                        INSERT INTO reservations
                            (id, stock_item_id, order_id, quantity, status, created_at)
                        VALUES
                            (:id, :sid, :oid, :qty, :status, :created_at)
                    """).bindparams(bindparam("created_at", type_=_TIMESTAMP)),
                    {
                        "id": str(reservation.id),
                        "sid": str(reservation.stock_item_id),
                        "oid": str(reservation.order_id),
                        "qty": reservation.quantity,
                        "status": reservation.status.value,
                        "created_at": reservation.created_at,
                    },
                )
            except IntegrityError as e:
                await session.rollback()
                raise VersionConflict(
                    f"reservation already exists for order {reservation.order_id}"
                ) from e
            await session.commit()
        return replace(item, version=expected_version + 1), reservation

    async def commit_cancellation(
        self, item: StockItem, expected_version: int, reservation: Reservation
    ) -> tuple[StockItem, Reservation]:
        async with self.session_factory() as session:
            await self._conditional_update(session, item, expected_version)
            result = await session.execute(
                text("""
                    UPDATE reservations
                    SET status = :status
                    WHERE id = :id AND status != :cancelled
                """),
                {
                    "id": str(reservation.id),
                    "status": reservation.status.value,
                    "cancelled": ReservationStatus.CANCELLED.value,
                },
            )
            if result.rowcount != 1:
                await session.rollback()
                raise VersionConflict(
                    f"reservation {reservation.id} is no longer active"
                )
            await session.commit()
        return replace(item, version=expected_version + 1), reservation

    async def _conditional_update(
        self, session: AsyncSession, item: StockItem, expected_version: int
    ) -> None:
        result = await session.execute(
            _UPDATE_STOCK,
            {
                "id": str(item.id),
                "available": item.quantity_available,
                "reserved": item.quantity_reserved,
                "now": item.last_updated,
                "expected": expected_version,
            },
        )
        if result.rowcount != 1:
            await session.rollback()
            raise VersionConflict(
                f"stock item {item.id} expected version {expected_version}"
            )
