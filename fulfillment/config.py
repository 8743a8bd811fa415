"""
Fulfillment — 設定

各サービスと同様に環境変数から設定を読み込む。
未設定の項目はローカル開発用のデフォルト値になる。
"""

import os

from pydantic import BaseModel, Field


class Settings(BaseModel):
    # None ならインメモリストア / イベント発行なし
    database_url: str | None = None
    redis_url: str | None = None
    # True なら在庫引き当てを Inventory Service に HTTP で依頼する
    remote_inventory: bool = False
    product_service_url: str = "http://localhost:8081"
    inventory_service_url: str = "http://localhost:8082"
    http_timeout: float = Field(default=10.0, gt=0)

    # 楽観的ロックの再試行
    occ_max_attempts: int = Field(default=5, ge=1)
    occ_base_delay: float = Field(default=0.005, ge=0)
    occ_max_delay: float = Field(default=0.1, ge=0)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "Settings":
        """環境変数から設定を作る。値の検証は pydantic に任せる。"""
        env = os.environ if environ is None else environ
        fields = {
            "database_url": env.get("DATABASE_URL"),
            "redis_url": env.get("REDIS_URL"),
            "product_service_url": env.get("PRODUCT_SERVICE_URL"),
            "inventory_service_url": env.get("INVENTORY_SERVICE_URL"),
            "remote_inventory": env.get("INVENTORY_REMOTE"),
            "http_timeout": env.get("HTTP_TIMEOUT"),
            "occ_max_attempts": env.get("OCC_MAX_ATTEMPTS"),
            "occ_base_delay": env.get("OCC_BASE_DELAY"),
            "occ_max_delay": env.get("OCC_MAX_DELAY"),
            "log_level": env.get("LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in fields.items() if v is not None})
