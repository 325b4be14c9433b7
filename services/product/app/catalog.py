"""
Product Service — 商品カタログ（ステータス管理部分のみ）

Order Service が価格を読み、Stock Service が在庫ステータスを更新する
ための最小限の API。商品の CRUD はこのサービスの対象外。

在庫由来のステータス変更 (ACTIVE ↔ OUT_OF_STOCK) は、商品が
DISCONTINUED の場合は無視する。DELETED の商品は存在しないものとして扱う。
"""

import logging
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import (
    BigInteger,
    Column,
    MetaData,
    Numeric,
    String,
    Table,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class ProductStatus(str, Enum):
    ACTIVE = "ACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISCONTINUED = "DISCONTINUED"
    DELETED = "DELETED"


AVAILABILITY_STATUSES = {ProductStatus.ACTIVE, ProductStatus.OUT_OF_STOCK}


class Product(BaseModel):
    product_id: int
    name: str
    price: Decimal
    category: str | None = None
    status: ProductStatus


class StatusUpdateRequest(BaseModel):
    status: ProductStatus


metadata = MetaData()

products_table = Table(
    "products",
    metadata,
    Column("product_id", BigInteger, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("price", Numeric(12, 2), nullable=False),
    Column("category", String(100)),
    Column("status", String(20), nullable=False, default=ProductStatus.ACTIVE.value),
)


def resolve_status(current: ProductStatus, requested: ProductStatus) -> ProductStatus:
    """要求されたステータスを適用した結果のステータスを返す。"""
    if requested in AVAILABILITY_STATUSES and current not in AVAILABILITY_STATUSES:
        return current
    return requested


def _to_product(row) -> Product:
    return Product(
        product_id=row.product_id,
        name=row.name,
        price=row.price,
        category=row.category,
        status=ProductStatus(row.status),
    )


class ProductCatalog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_product(self, product_id: int) -> Product | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(products_table).where(
                    products_table.c.product_id == product_id,
                    products_table.c.status != ProductStatus.DELETED.value,
                )
            )
            row = result.fetchone()
            return _to_product(row) if row else None

    async def update_status(
        self, product_id: int, requested: ProductStatus
    ) -> Product | None:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                select(products_table)
                .where(
                    products_table.c.product_id == product_id,
                    products_table.c.status != ProductStatus.DELETED.value,
                )
                .with_for_update()
            )
            row = result.fetchone()
            if row is None:
                return None

            product = _to_product(row)
            new_status = resolve_status(product.status, requested)
            if new_status == product.status:
                if requested != product.status:
                    logger.warning(
                        "Ignoring %s for product %s in status %s",
                        requested.value,
                        product_id,
                        product.status.value,
                    )
                return product

            await session.execute(
                update(products_table)
                .where(products_table.c.product_id == product_id)
                .values(status=new_status.value)
            )
        logger.info("Updated status for product ID %s to %s", product_id, new_status.value)
        return product.model_copy(update={"status": new_status})
