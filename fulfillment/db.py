"""
Fulfillment — データベース接続とスキーマ

SQL ストアが使うテーブル定義。
stock_items.version が楽観的ロックのバージョン番号、
reservations の (stock_item_id, order_id) UNIQUE 制約が冪等性キーになる。
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS stock_items (
        id VARCHAR(36) PRIMARY KEY,
        product_id VARCHAR(36) NOT NULL UNIQUE,
        quantity_available INTEGER NOT NULL CHECK (quantity_available >= 0),
        quantity_reserved INTEGER NOT NULL CHECK (quantity_reserved >= 0),
        version INTEGER NOT NULL,
        last_updated TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reservations (
        id VARCHAR(36) PRIMARY KEY,
        stock_item_id VARCHAR(36) NOT NULL REFERENCES stock_items (id),
        order_id VARCHAR(36) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        status VARCHAR(16) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        UNIQUE (stock_item_id, order_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(36) PRIMARY KEY,
        customer_name VARCHAR(255) NOT NULL,
        status VARCHAR(16) NOT NULL,
        total_amount NUMERIC(19, 4),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS line_items (
        id VARCHAR(36) PRIMARY KEY,
        order_id VARCHAR(36) NOT NULL REFERENCES orders (id),
        position INTEGER NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        product_name VARCHAR(255) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        unit_price NUMERIC(19, 4) NOT NULL
    )
    """,
]


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA:
            await conn.execute(text(statement))


# ── 行データの変換 ───────────────────────────────
# ドライバによって UUID / 日時 / 数値の戻り値の型が異なるため揃える。


def as_uuid(value) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def as_datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))
