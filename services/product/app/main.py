"""
Product Service — FastAPI エントリーポイント

価格の参照 (Order Service) と在庫ステータスの更新 (Stock Service)
に必要なエンドポイントだけを公開する。
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from .catalog import Product, ProductCatalog, StatusUpdateRequest, metadata
from .config import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = create_async_engine(settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    app.state.catalog = ProductCatalog(async_sessionmaker(engine, expire_on_commit=False))
    yield
    await engine.dispose()


app = FastAPI(title="Product Service", lifespan=lifespan)


def get_catalog(request: Request) -> ProductCatalog:
    return request.app.state.catalog


@app.get("/products/{product_id}", response_model=Product)
async def get_product(product_id: int, catalog: ProductCatalog = Depends(get_catalog)):
    product = await catalog.get_product(product_id)
    if not product:
        raise HTTPException(404, f"Product not found with id: {product_id}")
    return product


@app.patch("/products/{product_id}/status", response_model=Product)
async def update_product_status(
    product_id: int,
    req: StatusUpdateRequest,
    catalog: ProductCatalog = Depends(get_catalog),
):
    """商品ステータス更新（Stock Service の通知から呼ばれる）"""
    product = await catalog.update_status(product_id, req.status)
    if not product:
        raise HTTPException(404, f"Product not found with id: {product_id}")
    return product


@app.get("/health")
async def health():
    return {"status": "ok", "service": "product-service"}
