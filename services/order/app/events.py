"""
Order Service — イベント定義

注文ドメインで発生した事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。

order_events: 注文の作成・ステータス変更
saga_events:  注文作成 Saga の結果と実行ログ（オペレーターの突合用）
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .models import OrderStatus

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"
SAGA_EVENTS_CHANNEL = "saga_events"


class OrderLine(BaseModel):
    product_id: int
    quantity: int


class OrderCreated(BaseModel):
    """注文が PENDING で作成された（在庫減算前）"""
    order_id: int
    customer_id: int
    items: list[OrderLine]
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """注文ステータスが変更された"""
    order_id: int
    previous_status: OrderStatus
    status: OrderStatus
    unrestored_items: list[OrderLine] = []
    timestamp: datetime


class SagaCompleted(BaseModel):
    order_id: int
    saga_log: list[dict]


class SagaFailed(BaseModel):
    """注文を永続化する前に失敗した（副作用なし）"""
    customer_id: int
    saga_log: list[dict]


class SagaPartiallyApplied(BaseModel):
    """注文の永続化後に在庫減算が失敗した（手動での突合が必要）"""
    order_id: int
    saga_log: list[dict]


async def publish(
    redis: aioredis.Redis | None,
    channel: str,
    event: BaseModel,
) -> None:
    if redis is None:
        return
    try:
        await redis.publish(
            channel,
            json.dumps(
                {
                    "event_type": type(event).__name__,
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
    except RedisError:
        logger.warning("Failed to publish %s", type(event).__name__, exc_info=True)
