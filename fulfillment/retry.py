"""
Fulfillment — 再試行ポリシー

楽観的ロックの競合時に使う、上限付きの指数バックオフ。
上限を設けないと高競合時にライブロックする。
"""

import asyncio
import random
from dataclasses import dataclass

from .config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.005
    max_delay: float = 0.1
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.occ_max_attempts,
            base_delay=settings.occ_base_delay,
            max_delay=settings.occ_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """attempt 回目の失敗後に待つ秒数 (attempt は 1 始まり)"""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay = random.uniform(0, delay)
        return delay

    async def backoff(self, attempt: int) -> None:
        await asyncio.sleep(self.delay_for(attempt))


NO_DELAY = RetryPolicy(base_delay=0, max_delay=0, jitter=False)
