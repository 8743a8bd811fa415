"""
Fulfillment — イベント発行 (Redis Pub/Sub)

状態変更を Redis Pub/Sub でほかのサービスへ通知する。
Pub/Sub は fire-and-forget なので、発行の失敗は
ログに残すだけで業務処理は失敗させない。
"""

import json
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

INVENTORY_CHANNEL = "inventory_events"
ORDER_CHANNEL = "order_events"
SAGA_CHANNEL = "saga_events"


class EventPublisher:
    """redis が None の場合は何も発行しない (テスト・組み込み用)"""

    def __init__(self, redis: aioredis.Redis | None = None):
        self.redis = redis

    async def publish(self, channel: str, event: BaseModel) -> None:
        if self.redis is None:
            return
        payload = json.dumps(
            {
                "event_type": type(event).__name__,
                "data": event.model_dump(mode="json"),
            },
            default=str,
        )
        try:
            await self.redis.publish(channel, payload)
        except RedisError:
            logger.exception(
                "Failed to publish %s on %s", type(event).__name__, channel
            )
