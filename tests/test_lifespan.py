"""
起動処理のテスト

空のデータベースで各サービスを起動し、スキーマが作成されて
最初のリクエストから読み書きできることを確認する。
"""

from datetime import datetime, timezone

import pytest

from services.order.app import config as order_config
from services.order.app import main as order_main
from services.order.app.models import Order, OrderItem
from services.product.app import config as product_config
from services.product.app import main as product_main
from services.stock.app import config as stock_config
from services.stock.app import main as stock_main


@pytest.fixture
def empty_database(tmp_path, monkeypatch):
    def configure(name: str) -> None:
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / name}.db")

    monkeypatch.setenv("REDIS_URL", "")
    for module in (order_config, stock_config, product_config):
        module.get_settings.cache_clear()
    yield configure
    for module in (order_config, stock_config, product_config):
        module.get_settings.cache_clear()


async def test_stock_service_creates_its_schema(empty_database):
    empty_database("stock")

    async with stock_main.lifespan(stock_main.app):
        ledger = stock_main.app.state.ledger
        await ledger.add_stock(1, 4)
        assert (await ledger.get_stock(1)).quantity == 4


async def test_order_service_creates_its_schema(empty_database):
    empty_database("order")

    async with order_main.lifespan(order_main.app):
        repository = order_main.app.state.repository
        saved = await repository.save(
            Order(
                customer_id=1,
                order_date=datetime.now(timezone.utc),
                items=[OrderItem(product_id=1, quantity=2)],
            )
        )
        assert (await repository.find_by_id(saved.id)).items[0].quantity == 2


async def test_product_service_creates_its_schema(empty_database):
    empty_database("product")

    async with product_main.lifespan(product_main.app):
        assert await product_main.app.state.catalog.get_product(1) is None


async def test_restart_keeps_existing_rows(empty_database):
    empty_database("stock")

    async with stock_main.lifespan(stock_main.app):
        await stock_main.app.state.ledger.add_stock(1, 4)
    async with stock_main.lifespan(stock_main.app):
        assert (await stock_main.app.state.ledger.get_stock(1)).quantity == 4
