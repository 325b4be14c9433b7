"""
テスト共通フィクスチャ

Saga のテストでは、本物の StockLedger（インメモリストア）を
Order Service の StockClient と同じインタフェースで包んで使う。
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from services.order.app import errors as order_errors
from services.order.app.models import ProductSnapshot, StockSnapshot
from services.order.app.orchestrator import OrderFulfillmentOrchestrator
from services.order.app.pricing import PricingResolver
from services.order.app.repository import InMemoryOrderRepository
from services.stock.app import errors as stock_errors
from services.stock.app.ledger import StockLedger
from services.stock.app.models import ProductStatus, StockOperation, StockRecord
from services.stock.app.notifier import ProductAvailabilityNotifier
from services.stock.app.store import InMemoryStockStore


class RecordingStatusClient:
    """Product Service の代わりにステータス更新を記録する"""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[int, ProductStatus]] = []
        self.fail = fail

    async def update_status(self, product_id: int, status: ProductStatus) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("product-service down")
        self.calls.append((product_id, status))


class LedgerStockClient:
    """
    StockLedger を StockClient と同じ形で呼び出すアダプタ。

    呼び出しごとに一度イベントループに制御を返し、ネットワーク越しの
    呼び出しと同じようにほかの注文が割り込めるようにする。
    """

    def __init__(self, ledger: StockLedger) -> None:
        self.ledger = ledger
        self.failing_increments: set[int] = set()
        self.failing_decrements: set[int] = set()

    async def get_stock(self, product_id: int) -> StockSnapshot:
        await asyncio.sleep(0)
        try:
            record = await self.ledger.get_stock(product_id)
        except stock_errors.StockNotFound as e:
            raise order_errors.StockRecordNotFound(product_id) from e
        return _snapshot(record)

    async def decrement(self, product_id: int, quantity: int) -> StockSnapshot:
        if product_id in self.failing_decrements:
            raise order_errors.DownstreamUnavailable("stock-service", "boom", 503)
        return await self._apply(product_id, quantity, StockOperation.DECREMENT)

    async def increment(self, product_id: int, quantity: int) -> StockSnapshot:
        if product_id in self.failing_increments:
            raise order_errors.DownstreamUnavailable("stock-service", "boom", 503)
        return await self._apply(product_id, quantity, StockOperation.INCREMENT)

    async def _apply(
        self, product_id: int, quantity: int, operation: StockOperation
    ) -> StockSnapshot:
        await asyncio.sleep(0)
        try:
            record = await self.ledger.apply_delta(product_id, quantity, operation)
        except stock_errors.StockNotFound as e:
            raise order_errors.StockRecordNotFound(product_id) from e
        except stock_errors.InsufficientStock as e:
            raise order_errors.InsufficientStock(
                product_id, e.available, e.requested
            ) from e
        return _snapshot(record)


class FakeProductClient:
    def __init__(self, prices: dict[int, str]) -> None:
        self.prices = {pid: Decimal(p) for pid, p in prices.items()}

    async def get_product(self, product_id: int) -> ProductSnapshot:
        if product_id not in self.prices:
            raise order_errors.ProductNotFound(product_id)
        return ProductSnapshot(
            product_id=product_id,
            name=f"product-{product_id}",
            price=self.prices[product_id],
            status="ACTIVE",
        )


def _snapshot(record: StockRecord) -> StockSnapshot:
    return StockSnapshot(
        product_id=record.product_id,
        quantity=record.quantity,
        reorder_level=record.reorder_level,
    )


# ── Stock Fixtures ───────────────────────────────


@pytest.fixture
def status_client():
    return RecordingStatusClient()


@pytest.fixture
def notifier(status_client):
    return ProductAvailabilityNotifier(status_client)


@pytest.fixture
def stock_store():
    return InMemoryStockStore(
        [
            StockRecord(product_id=1, quantity=10, reorder_level=5),
            StockRecord(product_id=2, quantity=3, reorder_level=5),
            StockRecord(product_id=3, quantity=0, reorder_level=2),
        ]
    )


@pytest.fixture
async def ledger(stock_store, notifier):
    ledger = StockLedger(stock_store, notifier)
    yield ledger
    await notifier.drain()


# ── Order Fixtures ───────────────────────────────


@pytest.fixture
def stock_client(ledger):
    return LedgerStockClient(ledger)


@pytest.fixture
def product_client():
    return FakeProductClient({1: "2.50", 2: "10.00", 3: "7.25"})


@pytest.fixture
def order_repository():
    return InMemoryOrderRepository()


@pytest.fixture
def orchestrator(order_repository, stock_client, product_client):
    return OrderFulfillmentOrchestrator(
        order_repository, stock_client, PricingResolver(product_client)
    )


# ── SQL Fixtures ─────────────────────────────────


@pytest.fixture
async def sqlite_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return async_sessionmaker(sqlite_engine, expire_on_commit=False)
