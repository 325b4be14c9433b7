"""
Stock Service — ドメインモデル

在庫レコードと在庫更新リクエストを定義する。
low_stock は保存しない派生属性で、読み出しのたびに算出する。
"""

from enum import Enum

from pydantic import BaseModel, Field, computed_field

DEFAULT_REORDER_LEVEL = 10


class StockOperation(str, Enum):
    INCREMENT = "INCREMENT"
    DECREMENT = "DECREMENT"


class ProductStatus(str, Enum):
    """Product Service 側の商品ステータス（在庫側は ACTIVE ↔ OUT_OF_STOCK のみ触る）"""
    ACTIVE = "ACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISCONTINUED = "DISCONTINUED"
    DELETED = "DELETED"


class StockRecord(BaseModel):
    product_id: int
    quantity: int = Field(ge=0)
    reorder_level: int = Field(ge=0)

    @computed_field
    @property
    def low_stock(self) -> bool:
        return self.quantity < self.reorder_level


# ── Request Models ───────────────────────────────


class StockUpdateRequest(BaseModel):
    quantity: int = Field(gt=0)
    operation: StockOperation


class ReorderLevelUpdateRequest(BaseModel):
    reorder_level: int = Field(ge=0)


class NewStockRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=0, ge=0)
    reorder_level: int = Field(default=DEFAULT_REORDER_LEVEL, ge=0)
