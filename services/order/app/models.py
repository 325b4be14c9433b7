"""
Order Service — ドメインモデル

Order は合計金額を保存しない。合計は読み出しのたびに
PricingResolver が現在の単価から算出する (OrderView)。
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderItem(BaseModel):
    id: int | None = None
    product_id: int
    quantity: int = Field(gt=0)


class Order(BaseModel):
    id: int | None = None
    customer_id: int
    order_date: datetime
    status: OrderStatus = OrderStatus.PENDING
    items: list[OrderItem] = Field(min_length=1)


# ── Read Projection ──────────────────────────────


class OrderItemView(BaseModel):
    id: int | None
    product_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderView(BaseModel):
    id: int
    customer_id: int
    order_date: datetime
    status: OrderStatus
    items: list[OrderItemView]
    total_price: Decimal


# ── Downstream Snapshots ─────────────────────────


class StockSnapshot(BaseModel):
    """Stock Service から受け取った在庫レコード"""
    product_id: int
    quantity: int
    reorder_level: int


class ProductSnapshot(BaseModel):
    """Product Service から受け取った商品情報"""
    product_id: int
    name: str
    price: Decimal
    category: str | None = None
    status: str


# ── Request Models ───────────────────────────────


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int


class CreateOrderRequest(BaseModel):
    customer_id: int
    items: list[OrderItemRequest] = []


class StatusChange(BaseModel):
    """ステータス遷移の結果。補償に失敗した明細は unrestored_items に残る。"""
    order: Order
    previous_status: OrderStatus
    unrestored_items: list[OrderItem] = []

    @property
    def changed(self) -> bool:
        return self.order.status != self.previous_status
