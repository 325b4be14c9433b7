"""
Stock Service — Product Service クライアント

在庫の 0 ↔ 正 の境界を越えたときに商品ステータスを更新する。
呼び出し元は ProductAvailabilityNotifier のバックグラウンドタスクのみ。
"""

import httpx

from .models import ProductStatus


class ProductStatusClient:
    def __init__(
        self,
        product_service_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.product_url = product_service_url
        self.timeout = timeout
        self._transport = transport

    async def update_status(self, product_id: int, status: ProductStatus) -> None:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.patch(
                f"{self.product_url}/products/{product_id}/status",
                json={"status": status.value},
            )
            resp.raise_for_status()
