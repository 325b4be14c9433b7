"""
Stock Service — イベント定義

在庫ドメインで発生するイベント。stock_events チャネルに発行する。
Redis Pub/Sub は fire-and-forget なので、発行失敗はログに残すだけで
確定済みの在庫変更を失敗扱いにはしない。
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .models import StockOperation

logger = logging.getLogger(__name__)

STOCK_EVENTS_CHANNEL = "stock_events"


class StockAdded(BaseModel):
    """商品の初期在庫が登録された"""
    product_id: int
    quantity: int
    reorder_level: int
    timestamp: datetime


class StockAdjusted(BaseModel):
    """在庫数が増減した"""
    product_id: int
    operation: StockOperation
    amount: int
    previous_quantity: int
    quantity: int
    timestamp: datetime


class ReorderLevelChanged(BaseModel):
    """発注点が変更された"""
    product_id: int
    reorder_level: int
    timestamp: datetime


async def publish(redis: aioredis.Redis | None, event: BaseModel) -> None:
    if redis is None:
        return
    try:
        await redis.publish(
            STOCK_EVENTS_CHANNEL,
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
