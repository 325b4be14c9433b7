"""
Stock Service — FastAPI エントリーポイント

在庫台帳 (StockLedger) を HTTP API として公開する。
Order Service はここに在庫確認・増減を依頼する。
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from .config import get_settings
from .errors import InvalidStockRequest, StockServiceError
from .ledger import StockLedger
from .models import (
    NewStockRequest,
    ReorderLevelUpdateRequest,
    StockRecord,
    StockUpdateRequest,
)
from .notifier import ProductAvailabilityNotifier
from .product_client import ProductStatusClient
from .store import SqlStockStore, metadata


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
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    redis_pool = (
        aioredis.from_url(settings.redis_url, decode_responses=True)
        if settings.redis_url
        else None
    )
    notifier = ProductAvailabilityNotifier(
        ProductStatusClient(settings.product_service_url, settings.http_timeout)
    )
    app.state.ledger = StockLedger(SqlStockStore(session_factory), notifier, redis_pool)
    yield
    await notifier.drain()
    if redis_pool is not None:
        await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Stock Service", lifespan=lifespan)


@app.exception_handler(StockServiceError)
async def stock_error_handler(request: Request, exc: StockServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """入力不正もドメインの検証エラーと同じ 400 で返す"""
    error = InvalidStockRequest("Invalid stock request")
    return JSONResponse(
        status_code=error.status_code,
        content={**error.to_dict(), "errors": jsonable_encoder(exc.errors())},
    )


def get_ledger(request: Request) -> StockLedger:
    return request.app.state.ledger


# ── Command Endpoints ────────────────────────────


@app.post("/stocks", status_code=201, response_model=StockRecord)
async def add_stock(req: NewStockRequest, ledger: StockLedger = Depends(get_ledger)):
    """初期在庫の登録（商品作成時に Product 側から呼ばれる）"""
    return await ledger.add_stock(req.product_id, req.quantity, req.reorder_level)


@app.put("/stocks/{product_id}", response_model=StockRecord)
async def update_stock(
    product_id: int,
    req: StockUpdateRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    """在庫の増減（Order Service の Saga から呼ばれる）"""
    return await ledger.apply_delta(product_id, req.quantity, req.operation)


@app.patch("/stocks/{product_id}/reorder-level", response_model=StockRecord)
async def update_reorder_level(
    product_id: int,
    req: ReorderLevelUpdateRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.set_reorder_level(product_id, req.reorder_level)


# ── Query Endpoints ──────────────────────────────


@app.get("/stocks/low", response_model=list[StockRecord])
async def low_stock(ledger: StockLedger = Depends(get_ledger)):
    """発注点を下回っている在庫の一覧"""
    return await ledger.list_low_stock()


@app.get("/stocks/{product_id}", response_model=StockRecord)
async def get_stock(product_id: int, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.get_stock(product_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "stock-service"}
