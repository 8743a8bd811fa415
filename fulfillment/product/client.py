"""
Product — 価格参照 (Pricing Lookup)

Saga の Phase 1 で商品名と単価を取得する。
副作用がないので、失敗しても補償は不要。

  ProductServiceClient: Product Service に HTTP で問い合わせる
  InMemoryCatalogue:    組み込み・テスト用のカタログ
"""

import asyncio
from decimal import Decimal
from uuid import UUID

import httpx
from pydantic import BaseModel

from ..errors import ProductNotFound, TransportError
from ..outcome import Outcome


class ProductInfo(BaseModel):
    id: UUID
    name: str
    price: Decimal


class ProductServiceClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def lookup_product(self, product_id: UUID) -> Outcome[ProductInfo]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                resp = await client.get(f"/api/products/{product_id}")
        except httpx.HTTPError as e:
            return Outcome.failure(TransportError(f"lookup {product_id}: {e}"))

        if resp.status_code == 404:
            return Outcome.failure(ProductNotFound(product_id))
        if resp.is_error:
            return Outcome.failure(
                TransportError(f"lookup {product_id}: HTTP {resp.status_code}")
            )
        # 商品サービスは説明・カテゴリも返すが、Saga には id / name / price だけでよい
        return Outcome.success(ProductInfo.model_validate(resp.json()))


class InMemoryCatalogue:
    def __init__(self, products: list[ProductInfo] | None = None):
        self._products = {p.id: p for p in products or []}

    def add(self, product_id: UUID, name: str, price: Decimal | str) -> ProductInfo:
        product = ProductInfo(id=product_id, name=name, price=Decimal(price))
        self._products[product_id] = product
        return product

    async def lookup_product(self, product_id: UUID) -> Outcome[ProductInfo]:
        await asyncio.sleep(0)
        product = self._products.get(product_id)
        if product is None:
            return Outcome.failure(ProductNotFound(product_id))
        return Outcome.success(product)
