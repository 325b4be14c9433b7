"""
Order Fulfillment Orchestrator — 注文作成 Saga

Saga パターン（オーケストレーション型）:
  Order / Stock / Product の各サービスは共有トランザクションを持たない。
  オーケストレーターが各ステップを順に実行し、結果を saga_log に記録する。

  フロー:
  ┌──────────────────────────────────────────────────────────┐
  │  1. 入力検証（明細なし・数量 ≤ 0 は InvalidOrder）          │
  │  2. 商品ごとに数量を合算（同じ商品が複数行あっても合計で判定）│
  │  3. 全商品の在庫を確認（減算より前に全て確認する）            │
  │     ├─ 404     → ProductNotFound                          │
  │     └─ 不足    → InsufficientStock                        │
  │  4. 注文を PENDING で保存（まだ在庫は減らさない）            │
  │  5. 明細ごとに在庫を減算（入力順、合算しない）              │
  │     └─ 失敗 → PartialApplicationFault                      │
  │              自動ロールバックはしない（手動での突合）         │
  │  6. 現在価格で合計を算出して返す                            │
  └──────────────────────────────────────────────────────────┘

  注意: 3 と 5 の間にロックは保持しないので、同じ商品への別の注文が
  割り込んで在庫確認を通過することがある（予約フェーズなし）。
  その場合でも在庫台帳の減算は直列化されるので、在庫がマイナスになる
  ことはなく、後続の注文が 5 で失敗する。
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as aioredis

from . import events
from .errors import (
    InsufficientStock,
    InvalidOrder,
    OrderNotFound,
    PartialApplicationFault,
    ProductNotFound,
    StockRecordNotFound,
)
from .models import (
    Order,
    OrderItem,
    OrderItemRequest,
    OrderStatus,
    OrderView,
    StatusChange,
    StockSnapshot,
)
from .pricing import PricingResolver
from .repository import OrderRepository
from .status_machine import OrderStatusMachine

logger = logging.getLogger(__name__)


class StockGateway(Protocol):
    async def get_stock(self, product_id: int) -> StockSnapshot:
        ...

    async def decrement(self, product_id: int, quantity: int) -> StockSnapshot:
        ...

    async def increment(self, product_id: int, quantity: int) -> StockSnapshot:
        ...


def aggregate_quantities(items: Iterable[OrderItemRequest]) -> dict[int, int]:
    """商品ID ごとに数量を合算する（最初に出現した順を保つ）。"""
    totals: dict[int, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


class OrderFulfillmentOrchestrator:
    """注文作成 Saga のオーケストレーター"""

    def __init__(
        self,
        repository: OrderRepository,
        stock_client: StockGateway,
        pricing: PricingResolver,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.repository = repository
        self.stock_client = stock_client
        self.pricing = pricing
        self.redis = redis
        self.status_machine = OrderStatusMachine(repository, stock_client, redis)

    async def create_order(
        self,
        customer_id: int,
        items: Sequence[OrderItemRequest],
    ) -> OrderView:
        saga_log: list[dict] = []

        # ── Step 1: 入力検証 ────────────────────────
        if not items:
            raise InvalidOrder("Order must contain at least one item")
        for item in items:
            if item.quantity <= 0:
                raise InvalidOrder(
                    f"Quantity must be positive for product {item.product_id}"
                )

        # ── Step 2: 商品ごとに合算 ──────────────────
        demand = aggregate_quantities(items)

        # ── Step 3: 在庫確認 ────────────────────────
        step = _begin(saga_log, 1, "VerifyStock")
        try:
            await self._verify_stock(demand)
        except Exception as e:
            _fail(step, e)
            await events.publish(
                self.redis,
                events.SAGA_EVENTS_CHANNEL,
                events.SagaFailed(customer_id=customer_id, saga_log=saga_log),
            )
            raise
        step["status"] = "COMPLETED"

        # ── Step 4: 注文を PENDING で保存 ──────────
        step = _begin(saga_log, 2, "CreateOrder")
        order = await self.repository.save(
            Order(
                customer_id=customer_id,
                order_date=datetime.now(timezone.utc),
                status=OrderStatus.PENDING,
                items=[
                    OrderItem(product_id=i.product_id, quantity=i.quantity)
                    for i in items
                ],
            )
        )
        step["status"] = "COMPLETED"
        step["order_id"] = order.id
        logger.info("Order %s saved as PENDING for customer %s", order.id, customer_id)

        await events.publish(
            self.redis,
            events.ORDER_EVENTS_CHANNEL,
            events.OrderCreated(
                order_id=order.id,
                customer_id=customer_id,
                items=[
                    events.OrderLine(product_id=i.product_id, quantity=i.quantity)
                    for i in order.items
                ],
                timestamp=order.order_date,
            ),
        )

        # ── Step 5: 明細ごとに在庫を減算 ────────────
        applied: list[tuple[int, int]] = []
        for item in order.items:
            step = _begin(
                saga_log,
                len(saga_log) + 1,
                f"DecrementStock(product={item.product_id}, quantity={item.quantity})",
            )
            try:
                await self.stock_client.decrement(item.product_id, item.quantity)
            except Exception as e:
                _fail(step, e)
                logger.error(
                    "Order %s left PENDING with partial stock decrements %s; "
                    "failed on product %s: %s",
                    order.id,
                    applied,
                    item.product_id,
                    e,
                )
                await events.publish(
                    self.redis,
                    events.SAGA_EVENTS_CHANNEL,
                    events.SagaPartiallyApplied(order_id=order.id, saga_log=saga_log),
                )
                raise PartialApplicationFault(
                    order.id, applied, item.product_id, e
                ) from e
            step["status"] = "COMPLETED"
            applied.append((item.product_id, item.quantity))

        await events.publish(
            self.redis,
            events.SAGA_EVENTS_CHANNEL,
            events.SagaCompleted(order_id=order.id, saga_log=saga_log),
        )

        # ── Step 6: 現在価格で評価して返す ─────────
        return await self.pricing.render(order)

    async def _verify_stock(self, demand: dict[int, int]) -> None:
        """全商品の在庫を確認する。1つでも不足があれば何も減算しない。"""
        for product_id, requested in demand.items():
            try:
                stock = await self.stock_client.get_stock(product_id)
            except StockRecordNotFound as e:
                # 在庫経路の not found は商品が存在しないものとして扱う
                raise ProductNotFound(product_id) from e
            if stock.quantity < requested:
                logger.info(
                    "Insufficient stock for product %s: available=%s requested=%s",
                    product_id,
                    stock.quantity,
                    requested,
                )
                raise InsufficientStock(product_id, stock.quantity, requested)

    # ── ステータス変更 ──────────────────────────

    async def update_status(self, order_id: int, status: OrderStatus) -> StatusChange:
        order = await self.repository.find_by_id(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return await self.status_machine.transition(order, status)

    # ── 読み出し（副作用なし） ───────────────────

    async def get_order(self, order_id: int) -> OrderView:
        order = await self.repository.find_by_id(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return await self.pricing.render(order)

    async def list_orders(self) -> list[OrderView]:
        return await self.pricing.render_many(await self.repository.find_all())

    async def orders_by_customer(self, customer_id: int) -> list[OrderView]:
        return await self.pricing.render_many(
            await self.repository.find_by_customer_id(customer_id)
        )

    async def orders_by_product(self, product_id: int) -> list[OrderView]:
        return await self.pricing.render_many(
            await self.repository.find_by_product_id(product_id)
        )


def _begin(saga_log: list[dict], step: int, action: str) -> dict:
    entry = {
        "step": step,
        "action": action,
        "status": "EXECUTING",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    saga_log.append(entry)
    return entry


def _fail(entry: dict, error: Exception) -> None:
    entry["status"] = "FAILED"
    entry["error"] = str(error)
