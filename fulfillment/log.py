"""
Fulfillment — ロギング設定

各モジュールは logging.getLogger(__name__) を使う。
ハンドラの設定はアプリケーション側で一度だけ行う。
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # SQL ログは冗長なので抑える
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
