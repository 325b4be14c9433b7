"""
Order Service — 注文リポジトリ

注文と明細の永続化。明細は注文に従属し、個別のライフサイクルを持たない。
注文は物理削除しない（ステータスのみ更新する）。
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from itertools import count

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    insert,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import Order, OrderItem, OrderStatus

metadata = MetaData()

orders_table = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("customer_id", BigInteger, nullable=False, index=True),
    Column("order_date", DateTime(timezone=True), nullable=False),
    Column("status", String(20), nullable=False),
)

order_items_table = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", BigInteger, nullable=False, index=True),
    Column("quantity", Integer, nullable=False),
)


class OrderRepository(ABC):
    @abstractmethod
    async def save(self, order: Order) -> Order:
        """新規注文を保存し、ID を採番した注文を返す。"""

    @abstractmethod
    async def find_by_id(self, order_id: int) -> Order | None:
        ...

    @abstractmethod
    async def find_all(self) -> list[Order]:
        ...

    @abstractmethod
    async def find_by_customer_id(self, customer_id: int) -> list[Order]:
        ...

    @abstractmethod
    async def find_by_product_id(self, product_id: int) -> list[Order]:
        """指定商品を明細に含む注文"""

    @abstractmethod
    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        expected: OrderStatus | None = None,
    ) -> Order | None:
        """
        ステータスを更新する。

        expected を指定した場合は、現在のステータスが expected のときだけ
        更新する (compare-and-set)。該当する注文がなければ None を返す。
        """


class InMemoryOrderRepository(OrderRepository):
    """テスト・開発用のインメモリ実装"""

    def __init__(self) -> None:
        self._orders: dict[int, Order] = {}
        self._order_ids = count(1)
        self._item_ids = count(1)

    async def save(self, order: Order) -> Order:
        saved = order.model_copy(
            update={
                "id": next(self._order_ids),
                "items": [
                    item.model_copy(update={"id": next(self._item_ids)})
                    for item in order.items
                ],
            }
        )
        self._orders[saved.id] = saved
        return saved

    async def find_by_id(self, order_id: int) -> Order | None:
        return self._orders.get(order_id)

    async def find_all(self) -> list[Order]:
        return list(self._orders.values())

    async def find_by_customer_id(self, customer_id: int) -> list[Order]:
        return [o for o in self._orders.values() if o.customer_id == customer_id]

    async def find_by_product_id(self, product_id: int) -> list[Order]:
        return [
            o
            for o in self._orders.values()
            if any(item.product_id == product_id for item in o.items)
        ]

    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        expected: OrderStatus | None = None,
    ) -> Order | None:
        order = self._orders.get(order_id)
        if order is None or (expected is not None and order.status != expected):
            return None
        self._orders[order_id] = order.model_copy(update={"status": status})
        return self._orders[order_id]


class SqlOrderRepository(OrderRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, order: Order) -> Order:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                insert(orders_table).values(
                    customer_id=order.customer_id,
                    order_date=order.order_date,
                    status=order.status.value,
                )
            )
            order_id = result.inserted_primary_key[0]

            items = []
            for item in order.items:
                result = await session.execute(
                    insert(order_items_table).values(
                        order_id=order_id,
                        product_id=item.product_id,
                        quantity=item.quantity,
                    )
                )
                items.append(
                    item.model_copy(update={"id": result.inserted_primary_key[0]})
                )

        return order.model_copy(update={"id": order_id, "items": items})

    async def find_by_id(self, order_id: int) -> Order | None:
        orders = await self._load(orders_table.c.id == order_id)
        return orders[0] if orders else None

    async def find_all(self) -> list[Order]:
        return await self._load()

    async def find_by_customer_id(self, customer_id: int) -> list[Order]:
        return await self._load(orders_table.c.customer_id == customer_id)

    async def find_by_product_id(self, product_id: int) -> list[Order]:
        containing = select(order_items_table.c.order_id).where(
            order_items_table.c.product_id == product_id
        )
        return await self._load(orders_table.c.id.in_(containing))

    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        expected: OrderStatus | None = None,
    ) -> Order | None:
        criteria = [orders_table.c.id == order_id]
        if expected is not None:
            criteria.append(orders_table.c.status == expected.value)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(orders_table).where(*criteria).values(status=status.value)
            )
        if result.rowcount == 0:
            return None
        return await self.find_by_id(order_id)

    async def _load(self, *criteria) -> list[Order]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(orders_table).where(*criteria).order_by(orders_table.c.id)
            )
            rows = result.fetchall()
            if not rows:
                return []

            result = await session.execute(
                select(order_items_table)
                .where(order_items_table.c.order_id.in_([row.id for row in rows]))
                .order_by(order_items_table.c.id)
            )
            items: defaultdict[int, list[OrderItem]] = defaultdict(list)
            for item in result.fetchall():
                items[item.order_id].append(
                    OrderItem(id=item.id, product_id=item.product_id, quantity=item.quantity)
                )

        return [
            Order(
                id=row.id,
                customer_id=row.customer_id,
                order_date=row.order_date,
                status=OrderStatus(row.status),
                items=items[row.id],
            )
            for row in rows
        ]
