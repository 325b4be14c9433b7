"""
Order Service — FastAPI エントリーポイント

注文作成 Saga と注文ステータス変更を HTTP API として公開する。
読み出し系エンドポイントは毎回現在価格で合計を算出する。
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from .clients import ProductClient, StockClient
from .config import get_settings
from .errors import InvalidOrder, OrderServiceError
from .models import CreateOrderRequest, OrderStatus, OrderView
from .orchestrator import OrderFulfillmentOrchestrator
from .pricing import PricingResolver
from .repository import SqlOrderRepository, metadata

logger = logging.getLogger(__name__)


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
    redis_pool = (
        aioredis.from_url(settings.redis_url, decode_responses=True)
        if settings.redis_url
        else None
    )
    app.state.repository = SqlOrderRepository(
        async_sessionmaker(engine, expire_on_commit=False)
    )
    app.state.stock_client = StockClient(
        settings.stock_service_url, settings.http_timeout
    )
    app.state.product_client = ProductClient(
        settings.product_service_url, settings.http_timeout
    )
    app.state.redis = redis_pool
    yield
    if redis_pool is not None:
        await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


@app.exception_handler(OrderServiceError)
async def order_error_handler(request: Request, exc: OrderServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """入力不正もドメインの検証エラーと同じ 400 で返す"""
    error = InvalidOrder("Invalid order request")
    return JSONResponse(
        status_code=error.status_code,
        content={**error.to_dict(), "errors": jsonable_encoder(exc.errors())},
    )


def get_orchestrator(request: Request) -> OrderFulfillmentOrchestrator:
    state = request.app.state
    return OrderFulfillmentOrchestrator(
        state.repository,
        state.stock_client,
        PricingResolver(state.product_client),
        state.redis,
    )


# ── Command Endpoints ────────────────────────────


@app.post("/orders", status_code=201, response_model=OrderView)
async def create_order(
    req: CreateOrderRequest,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    """注文作成 Saga を実行する。"""
    logger.info("POST /orders customer=%s items=%d", req.customer_id, len(req.items))
    return await orchestrator.create_order(req.customer_id, req.items)


@app.patch("/orders/{order_id}")
async def update_order_status(
    order_id: int,
    status: OrderStatus,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    """注文ステータス変更（CANCELLED の場合は在庫を戻す）"""
    change = await orchestrator.update_status(order_id, status)
    result = {
        "order_id": order_id,
        "status": change.order.status.value,
        "message": "Order status updated successfully",
    }
    if change.unrestored_items:
        result["unrestored_items"] = [
            {"product_id": i.product_id, "quantity": i.quantity}
            for i in change.unrestored_items
        ]
    return result


# ── Query Endpoints ──────────────────────────────


@app.get("/orders", response_model=list[OrderView])
async def list_orders(
    customer_id: int | None = None,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    if customer_id is None:
        return await orchestrator.list_orders()
    return await orchestrator.orders_by_customer(customer_id)


@app.get("/orders/product/{product_id}", response_model=list[OrderView])
async def orders_of_product(
    product_id: int,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.orders_by_product(product_id)


@app.get("/orders/{order_id}", response_model=OrderView)
async def get_order(
    order_id: int,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_order(order_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
