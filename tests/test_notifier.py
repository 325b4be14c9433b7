import asyncio
import logging

import pytest

from services.stock.app.models import ProductStatus
from services.stock.app.notifier import ProductAvailabilityNotifier


@pytest.mark.parametrize(
    "previous, new, expected",
    [
        (5, 0, ProductStatus.OUT_OF_STOCK),
        (0, 3, ProductStatus.ACTIVE),
        (5, 2, None),
        (2, 5, None),
        (0, 0, None),
    ],
)
def test_target_status(previous, new, expected):
    assert ProductAvailabilityNotifier.target_status(previous, new) == expected


async def test_notify_without_crossing_zero_schedules_nothing(notifier, status_client):
    notifier.notify(1, 5, 4)
    assert notifier.pending == 0
    await notifier.drain()
    assert status_client.calls == []


async def test_notify_returns_before_delivery(notifier, status_client):
    notifier.notify(1, 1, 0)

    assert notifier.pending == 1
    assert status_client.calls == []

    await notifier.drain()
    assert status_client.calls == [(1, ProductStatus.OUT_OF_STOCK)]
    assert notifier.pending == 0


async def test_delivery_failure_is_logged(notifier, status_client, caplog):
    status_client.fail = True

    with caplog.at_level(logging.ERROR, logger="services.stock.app.notifier"):
        notifier.notify(9, 0, 4)
        await notifier.drain()

    assert "Failed product status update" in caplog.text
    assert notifier.pending == 0


class SlowOutOfStockClient:
    """OUT_OF_STOCK の送信だけが遅い Product Service"""

    def __init__(self) -> None:
        self.calls: list[tuple[int, ProductStatus]] = []

    async def update_status(self, product_id: int, status: ProductStatus) -> None:
        if status is ProductStatus.OUT_OF_STOCK:
            await asyncio.sleep(0.05)
        self.calls.append((product_id, status))


async def test_deliveries_for_one_product_keep_their_order():
    client = SlowOutOfStockClient()
    notifier = ProductAvailabilityNotifier(client)

    notifier.notify(1, 1, 0)
    notifier.notify(1, 0, 5)
    await notifier.drain()

    # 後から発行した ACTIVE が最終状態になる
    assert client.calls == [(1, ProductStatus.OUT_OF_STOCK), (1, ProductStatus.ACTIVE)]
    assert notifier.pending == 0


async def test_deliveries_for_different_products_do_not_wait_on_each_other():
    client = SlowOutOfStockClient()
    notifier = ProductAvailabilityNotifier(client)

    notifier.notify(1, 1, 0)
    notifier.notify(2, 0, 5)
    await notifier.drain()

    assert client.calls == [(2, ProductStatus.ACTIVE), (1, ProductStatus.OUT_OF_STOCK)]
