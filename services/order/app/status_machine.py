"""
Order Service — 注文ステータス遷移 (OrderStatusMachine)

状態遷移:
    PENDING → SHIPPED → DELIVERED
    PENDING → DELIVERED           (SHIPPED を飛ばしてよい)
    PENDING → CANCELLED
    SHIPPED → CANCELLED
    DELIVERED / CANCELLED は終端

CANCELLED への遷移では、ステータスを保存した後に明細ごとに
在庫を戻す（補償トランザクション）。補償はそれぞれ独立に実行し、
失敗してもログに残すだけで他の明細やステータス変更は取り消さない。
ステータス更新と補償はアトミックではない（2PC なし）。
ステータスの書き込みは読み取り時のステータスを条件にした compare-and-set で、
競合に負けた遷移は InvalidTransition になり補償も走らない。
"""

import logging
from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as aioredis

from . import events
from .errors import InvalidTransition, OrderNotFound
from .models import Order, OrderItem, OrderStatus, StatusChange
from .repository import OrderRepository

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class StockRestorer(Protocol):
    async def increment(self, product_id: int, quantity: int):
        ...


class OrderStatusMachine:
    def __init__(
        self,
        repository: OrderRepository,
        stock_client: StockRestorer,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.repository = repository
        self.stock_client = stock_client
        self.redis = redis

    @staticmethod
    def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
        return requested == current or requested in ALLOWED_TRANSITIONS[current]

    async def transition(self, order: Order, requested: OrderStatus) -> StatusChange:
        current = order.status

        if current is OrderStatus.CANCELLED:
            raise InvalidTransition(
                current, requested, "Cancelled orders cannot be modified"
            )
        if requested == current:
            return StatusChange(order=order, previous_status=current)
        if not self.can_transition(current, requested):
            raise InvalidTransition(current, requested)

        updated = await self.repository.update_status(
            order.id, requested, expected=current
        )
        if updated is None:
            # 読み取り後に別リクエストがステータスを書き換えた
            latest = await self.repository.find_by_id(order.id)
            if latest is None:
                raise OrderNotFound(order.id)
            logger.warning(
                "Order %s: lost status race (%s -> %s, now %s)",
                order.id,
                current.value,
                requested.value,
                latest.status.value,
            )
            raise InvalidTransition(
                latest.status,
                requested,
                f"Order {order.id} status changed concurrently to {latest.status.value}",
            )
        logger.info("Order %s: %s -> %s", order.id, current.value, requested.value)

        unrestored: list[OrderItem] = []
        if requested is OrderStatus.CANCELLED:
            unrestored = await self._restore_stock(updated)

        await events.publish(
            self.redis,
            events.ORDER_EVENTS_CHANNEL,
            events.OrderStatusChanged(
                order_id=order.id,
                previous_status=current,
                status=requested,
                unrestored_items=[
                    events.OrderLine(product_id=i.product_id, quantity=i.quantity)
                    for i in unrestored
                ],
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return StatusChange(
            order=updated, previous_status=current, unrestored_items=unrestored
        )

    async def _restore_stock(self, order: Order) -> list[OrderItem]:
        """明細ごとに在庫を戻し、戻せなかった明細を返す。"""
        failed: list[OrderItem] = []
        for item in order.items:
            try:
                await self.stock_client.increment(item.product_id, item.quantity)
            except Exception:
                logger.exception(
                    "Failed to restore stock for product %s (order %s, quantity %s)",
                    item.product_id,
                    order.id,
                    item.quantity,
                )
                failed.append(item)
        if failed:
            logger.error(
                "Order %s cancelled with %d unrestored item(s); reconciliation required",
                order.id,
                len(failed),
            )
        return failed
