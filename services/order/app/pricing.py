"""
Order Service — 価格解決 (PricingResolver)

注文の合計金額は保存しない。読み出しのたびに Product Service から
現在の単価を取得して計算するので、過去の注文の合計も現在価格で表示される。

明細の商品が解決できない場合（削除済みなど）は、その明細を飛ばさず
読み出し全体を ProductNotFound で失敗させる。
"""

import asyncio
from decimal import Decimal
from typing import Protocol

from .models import Order, OrderItemView, OrderView, ProductSnapshot


class ProductLookup(Protocol):
    async def get_product(self, product_id: int) -> ProductSnapshot:
        ...


class PricingResolver:
    def __init__(self, product_client: ProductLookup) -> None:
        self.product_client = product_client

    async def price_for(self, product_id: int) -> Decimal:
        product = await self.product_client.get_product(product_id)
        return product.price

    async def render(self, order: Order) -> OrderView:
        """注文を現在の単価で評価した OrderView に変換する。"""
        product_ids = list(dict.fromkeys(item.product_id for item in order.items))
        prices = dict(
            zip(
                product_ids,
                await asyncio.gather(*(self.price_for(pid) for pid in product_ids)),
            )
        )

        items = [
            OrderItemView(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=prices[item.product_id],
                line_total=prices[item.product_id] * item.quantity,
            )
            for item in order.items
        ]
        return OrderView(
            id=order.id,
            customer_id=order.customer_id,
            order_date=order.order_date,
            status=order.status,
            items=items,
            total_price=sum((i.line_total for i in items), Decimal("0")),
        )

    async def render_many(self, orders: list[Order]) -> list[OrderView]:
        return [await self.render(order) for order in orders]
