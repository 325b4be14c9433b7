"""
Stock Service — 在庫台帳 (StockLedger)

商品ごとの在庫数と発注点を管理する。

同時実行制御:
  在庫の「確認 → 減算」は典型的な check-then-act 競合になる。
  商品ID ごとの asyncio.Lock でプロセス内の更新を1つずつに直列化し、
  さらにストア側の行ロック (SELECT ... FOR UPDATE) でプロセス間も直列化する。
  グローバルロックは使わないので、別商品の更新は並行に進む。

  ┌─────────────┐  lock(product_id)  ┌──────────────┐
  │ apply_delta │ ─────────────────▶ │ StockStore   │ FOR UPDATE
  └──────┬──────┘                    └──────────────┘
         │ 更新確定後
         ▼
  ProductAvailabilityNotifier.notify()  (fire-and-forget)
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone

import redis.asyncio as aioredis

from . import events
from .errors import InsufficientStock, InvalidStockRequest, StockNotFound
from .models import DEFAULT_REORDER_LEVEL, StockOperation, StockRecord
from .notifier import ProductAvailabilityNotifier
from .store import StockStore

logger = logging.getLogger(__name__)


class StockLedger:
    def __init__(
        self,
        store: StockStore,
        notifier: ProductAvailabilityNotifier,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.redis = redis
        # ロックはプロセス内で共有する必要があるので、台帳はアプリにつき1つ
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_stock(self, product_id: int) -> StockRecord:
        record = await self.store.get(product_id)
        if record is None:
            raise StockNotFound(product_id)
        return record

    async def add_stock(
        self,
        product_id: int,
        quantity: int = 0,
        reorder_level: int = DEFAULT_REORDER_LEVEL,
    ) -> StockRecord:
        """新商品の初期在庫レコードを作成する。"""
        if quantity < 0 or reorder_level < 0:
            raise InvalidStockRequest("Quantity and reorder level cannot be negative")

        record = await self.store.add(
            StockRecord(
                product_id=product_id,
                quantity=quantity,
                reorder_level=reorder_level,
            )
        )
        logger.info("Initial stock added: product=%s quantity=%s", product_id, quantity)
        await events.publish(
            self.redis,
            events.StockAdded(
                product_id=product_id,
                quantity=quantity,
                reorder_level=reorder_level,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return record

    async def apply_delta(
        self,
        product_id: int,
        amount: int,
        operation: StockOperation,
    ) -> StockRecord:
        """
        在庫数を増減する。

        DECREMENT で在庫がマイナスになる場合は InsufficientStock。
        INCREMENT は上限なし。更新確定後に商品ステータス通知を
        バックグラウンドで起動する（結果は待たない）。
        """
        if amount <= 0:
            raise InvalidStockRequest("Quantity must be a positive integer")

        def change(record: StockRecord) -> StockRecord:
            if operation is StockOperation.INCREMENT:
                return record.model_copy(update={"quantity": record.quantity + amount})
            if record.quantity - amount < 0:
                raise InsufficientStock(product_id, record.quantity, amount)
            return record.model_copy(update={"quantity": record.quantity - amount})

        async with self._locks[product_id]:
            try:
                before, after = await self.store.modify(product_id, change)
            except InsufficientStock as e:
                logger.info("Rejected decrement: %s", e)
                raise

        logger.info(
            "Stock %s for product %s: %s -> %s",
            operation.value,
            product_id,
            before.quantity,
            after.quantity,
        )
        self.notifier.notify(product_id, before.quantity, after.quantity)
        await events.publish(
            self.redis,
            events.StockAdjusted(
                product_id=product_id,
                operation=operation,
                amount=amount,
                previous_quantity=before.quantity,
                quantity=after.quantity,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return after

    async def list_low_stock(self) -> list[StockRecord]:
        return [r for r in await self.store.list_all() if r.low_stock]

    async def set_reorder_level(self, product_id: int, level: int) -> StockRecord:
        if level < 0:
            raise InvalidStockRequest("Reorder level cannot be negative")

        async with self._locks[product_id]:
            _, after = await self.store.modify(
                product_id,
                lambda record: record.model_copy(update={"reorder_level": level}),
            )

        await events.publish(
            self.redis,
            events.ReorderLevelChanged(
                product_id=product_id,
                reorder_level=level,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return after
