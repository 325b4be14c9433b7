"""
Stock Service — 商品在庫ステータス通知 (ProductAvailabilityNotifier)

在庫数が 0 をまたいだときに商品ステータスを切り替える:
    previous > 0 かつ new == 0  →  OUT_OF_STOCK
    previous == 0 かつ new > 0  →  ACTIVE

通知は fire-and-forget。在庫更新の呼び出し元はタスクの完了を待たず、
失敗も受け取らない（ログに残すだけ）。DISCONTINUED / DELETED の商品を
触らないことは Product Service 側の責務で、ここでは現在のステータスを見ない。

同じ商品への通知は発行順に届ける。商品ごとに直前のタスクの完了を待ってから
送信するので、OUT_OF_STOCK → ACTIVE が逆順で上書きされることはない。
"""

import asyncio
import logging
from typing import Protocol

from .models import ProductStatus

logger = logging.getLogger(__name__)


class StatusUpdater(Protocol):
    async def update_status(self, product_id: int, status: ProductStatus) -> None:
        ...


class ProductAvailabilityNotifier:
    def __init__(self, product_client: StatusUpdater) -> None:
        self.product_client = product_client
        self._pending: set[asyncio.Task] = set()
        self._tails: dict[int, asyncio.Task] = {}

    @staticmethod
    def target_status(previous_qty: int, new_qty: int) -> ProductStatus | None:
        if previous_qty > 0 and new_qty == 0:
            return ProductStatus.OUT_OF_STOCK
        if previous_qty == 0 and new_qty > 0:
            return ProductStatus.ACTIVE
        return None

    def notify(self, product_id: int, previous_qty: int, new_qty: int) -> None:
        """ステータス変更が必要ならバックグラウンドタスクを起動してすぐ戻る。"""
        status = self.target_status(previous_qty, new_qty)
        if status is None:
            return
        previous = self._tails.get(product_id)
        task = asyncio.create_task(self._deliver(product_id, status, previous))
        self._tails[product_id] = task
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(product_id, t))

    def _finished(self, product_id: int, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._tails.get(product_id) is task:
            del self._tails[product_id]

    async def _deliver(
        self,
        product_id: int,
        status: ProductStatus,
        previous: asyncio.Task | None = None,
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await self.product_client.update_status(product_id, status)
        except Exception:
            logger.exception(
                "Failed product status update: product=%s status=%s",
                product_id,
                status.value,
            )
        else:
            logger.info("Product %s marked %s", product_id, status.value)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """未完了の通知タスクを待つ（シャットダウン時・テスト用）。"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
