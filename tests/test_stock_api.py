import httpx
import pytest

from services.stock.app.main import app, get_ledger


@pytest.fixture
async def client(ledger):
    app.dependency_overrides[get_ledger] = lambda: ledger
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://stock"
    ) as client:
        yield client
    app.dependency_overrides.clear()


async def test_get_stock(client):
    resp = await client.get("/stocks/1")
    assert resp.status_code == 200
    assert resp.json() == {
        "product_id": 1,
        "quantity": 10,
        "reorder_level": 5,
        "low_stock": False,
    }


async def test_get_unknown_stock_returns_404(client):
    resp = await client.get("/stocks/999")
    assert resp.status_code == 404
    assert resp.json()["error"] == "StockNotFound"


async def test_decrement(client):
    resp = await client.put("/stocks/1", json={"quantity": 4, "operation": "DECREMENT"})
    assert resp.status_code == 200
    assert resp.json()["quantity"] == 6


async def test_decrement_below_zero_returns_400_with_figures(client):
    resp = await client.put("/stocks/2", json={"quantity": 5, "operation": "DECREMENT"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "InsufficientStock"
    assert body["available"] == 3
    assert body["requested"] == 5


async def test_non_positive_quantity_is_rejected_at_the_boundary(client):
    resp = await client.put("/stocks/1", json={"quantity": 0, "operation": "INCREMENT"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidStockRequest"


async def test_low_stock(client):
    resp = await client.get("/stocks/low")
    assert resp.status_code == 200
    assert sorted(r["product_id"] for r in resp.json()) == [2, 3]


async def test_update_reorder_level(client):
    resp = await client.patch("/stocks/1/reorder-level", json={"reorder_level": 11})
    assert resp.status_code == 200
    assert resp.json()["low_stock"] is True

    resp = await client.patch("/stocks/1/reorder-level", json={"reorder_level": -1})
    assert resp.status_code == 400


async def test_add_stock(client):
    resp = await client.post("/stocks", json={"product_id": 77})
    assert resp.status_code == 201
    assert resp.json()["reorder_level"] == 10

    resp = await client.post("/stocks", json={"product_id": 77})
    assert resp.status_code == 409


async def test_unknown_operation_is_a_client_error(client):
    resp = await client.put("/stocks/1", json={"quantity": 1, "operation": "RESET"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "InvalidStockRequest"
    assert body["errors"][0]["loc"] == ["body", "operation"]
