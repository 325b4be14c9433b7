"""
Order Service — 下流サービスクライアント

Stock Service / Product Service への同期 HTTP 呼び出し。
httpx の例外とステータスコードはここで Order Service の例外体系に変換する:

  404                  → StockRecordNotFound / ProductNotFound
  400 (在庫減算)        → InsufficientStock
  5xx / 想定外の応答     → DownstreamUnavailable (502)
  タイムアウト・接続失敗  → DownstreamUnavailable (503)

リトライはこの層では行わない。
"""

import httpx

from .errors import (
    DownstreamUnavailable,
    InsufficientStock,
    ProductNotFound,
    StockRecordNotFound,
)
from .models import ProductSnapshot, StockSnapshot


class _ServiceClient:
    service_name = "downstream"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise DownstreamUnavailable(
                self.service_name, f"timed out: {e!r}", status_code=503
            ) from e
        except httpx.TransportError as e:
            raise DownstreamUnavailable(
                self.service_name, f"connection failed: {e!r}", status_code=503
            ) from e

        if resp.is_server_error:
            raise DownstreamUnavailable(
                self.service_name, f"HTTP {resp.status_code}: {resp.text}"
            )
        return resp

    def _unexpected(self, resp: httpx.Response) -> DownstreamUnavailable:
        return DownstreamUnavailable(
            self.service_name, f"unexpected HTTP {resp.status_code}: {resp.text}"
        )


class StockClient(_ServiceClient):
    service_name = "stock-service"

    async def get_stock(self, product_id: int) -> StockSnapshot:
        resp = await self._send("GET", f"/stocks/{product_id}")
        if resp.status_code == 404:
            raise StockRecordNotFound(product_id)
        if resp.status_code != 200:
            raise self._unexpected(resp)
        return StockSnapshot.model_validate(resp.json())

    async def decrement(self, product_id: int, quantity: int) -> StockSnapshot:
        return await self._update(product_id, quantity, "DECREMENT")

    async def increment(self, product_id: int, quantity: int) -> StockSnapshot:
        return await self._update(product_id, quantity, "INCREMENT")

    async def _update(
        self, product_id: int, quantity: int, operation: str
    ) -> StockSnapshot:
        resp = await self._send(
            "PUT",
            f"/stocks/{product_id}",
            json={"quantity": quantity, "operation": operation},
        )
        if resp.status_code == 404:
            raise StockRecordNotFound(product_id)
        if resp.status_code == 400 and _error_name(resp) in (None, "InsufficientStock"):
            body = _json_or_empty(resp)
            raise InsufficientStock(
                product_id,
                body.get("available"),
                body.get("requested", quantity),
            )
        if resp.status_code != 200:
            raise self._unexpected(resp)
        return StockSnapshot.model_validate(resp.json())


class ProductClient(_ServiceClient):
    service_name = "product-service"

    async def get_product(self, product_id: int) -> ProductSnapshot:
        resp = await self._send("GET", f"/products/{product_id}")
        if resp.status_code == 404:
            raise ProductNotFound(product_id)
        if resp.status_code != 200:
            raise self._unexpected(resp)
        return ProductSnapshot.model_validate(resp.json())


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_name(resp: httpx.Response) -> str | None:
    return _json_or_empty(resp).get("error")
