from decimal import Decimal

import pytest
from sqlalchemy import insert

from services.product.app.catalog import (
    ProductCatalog,
    ProductStatus,
    metadata,
    products_table,
    resolve_status,
)


@pytest.mark.parametrize(
    "current, requested, expected",
    [
        (ProductStatus.ACTIVE, ProductStatus.OUT_OF_STOCK, ProductStatus.OUT_OF_STOCK),
        (ProductStatus.OUT_OF_STOCK, ProductStatus.ACTIVE, ProductStatus.ACTIVE),
        (ProductStatus.DISCONTINUED, ProductStatus.ACTIVE, ProductStatus.DISCONTINUED),
        (ProductStatus.DISCONTINUED, ProductStatus.OUT_OF_STOCK, ProductStatus.DISCONTINUED),
        (ProductStatus.ACTIVE, ProductStatus.DISCONTINUED, ProductStatus.DISCONTINUED),
    ],
)
def test_resolve_status(current, requested, expected):
    assert resolve_status(current, requested) == expected


@pytest.fixture
async def catalog(sqlite_engine, session_factory):
    async with sqlite_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        await conn.execute(
            insert(products_table),
            [
                {"product_id": 1, "name": "Widget", "price": Decimal("2.50"), "status": "ACTIVE"},
                {"product_id": 2, "name": "Gadget", "price": Decimal("9.99"), "status": "DISCONTINUED"},
                {"product_id": 3, "name": "Old", "price": Decimal("1.00"), "status": "DELETED"},
            ],
        )
    return ProductCatalog(session_factory)


async def test_get_product(catalog):
    product = await catalog.get_product(1)
    assert product.name == "Widget"
    assert product.price == Decimal("2.50")
    assert await catalog.get_product(3) is None
    assert await catalog.get_product(99) is None


async def test_availability_update(catalog):
    product = await catalog.update_status(1, ProductStatus.OUT_OF_STOCK)
    assert product.status == ProductStatus.OUT_OF_STOCK
    assert (await catalog.get_product(1)).status == ProductStatus.OUT_OF_STOCK


async def test_discontinued_product_ignores_availability_update(catalog):
    product = await catalog.update_status(2, ProductStatus.ACTIVE)
    assert product.status == ProductStatus.DISCONTINUED


async def test_deleted_product_cannot_be_updated(catalog):
    assert await catalog.update_status(3, ProductStatus.ACTIVE) is None
