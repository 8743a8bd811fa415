"""
Fulfillment — 処理結果 (Outcome)

在庫引き当てや価格取得の結果を、例外ではなく値として返す。
オーケストレーターの補償分岐が try/except ではなく
通常の条件分岐になるようにするため。
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from .errors import FulfillmentError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    error: FulfillmentError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """成功なら値を返し、失敗ならエラーを送出する。"""
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: FulfillmentError) -> "Outcome[T]":
        return cls(error=error)
