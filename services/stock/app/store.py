"""
Stock Service — 在庫ストア

在庫レコードの永続化を抽象化する。StockLedger はこのインタフェース
だけを使い、ストアの実装（PostgreSQL / インメモリ）を知らない。

modify() は「読み出し → 変更 → 書き込み」を1トランザクションで行う。
SQL 実装では SELECT ... FOR UPDATE で行ロックを取るので、
複数ワーカープロセスからの同時更新も直列化される。
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    Table,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import StockAlreadyExists, StockNotFound
from .models import StockRecord

StockChange = Callable[[StockRecord], StockRecord]

metadata = MetaData()

stock_table = Table(
    "stock",
    metadata,
    Column("product_id", BigInteger, primary_key=True, autoincrement=False),
    Column("quantity", Integer, nullable=False),
    Column("reorder_level", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("quantity >= 0", name="ck_stock_quantity_nonneg"),
    CheckConstraint("reorder_level >= 0", name="ck_stock_reorder_level_nonneg"),
)


class StockStore(ABC):
    @abstractmethod
    async def get(self, product_id: int) -> StockRecord | None:
        ...

    @abstractmethod
    async def add(self, record: StockRecord) -> StockRecord:
        """新規レコードを登録する。既に存在すれば StockAlreadyExists。"""

    @abstractmethod
    async def list_all(self) -> list[StockRecord]:
        ...

    @abstractmethod
    async def modify(
        self, product_id: int, change: StockChange
    ) -> tuple[StockRecord, StockRecord]:
        """
        レコードをロックした状態で change を適用し、(変更前, 変更後) を返す。

        change が例外を送出した場合は何も書き込まない。
        """


class InMemoryStockStore(StockStore):
    """テスト・開発用のインメモリ実装（単一プロセス内でのみ有効）"""

    def __init__(self, records: list[StockRecord] | None = None) -> None:
        self._records: dict[int, StockRecord] = {
            r.product_id: r for r in records or []
        }

    async def get(self, product_id: int) -> StockRecord | None:
        return self._records.get(product_id)

    async def add(self, record: StockRecord) -> StockRecord:
        if record.product_id in self._records:
            raise StockAlreadyExists(record.product_id)
        self._records[record.product_id] = record
        return record

    async def list_all(self) -> list[StockRecord]:
        return list(self._records.values())

    async def modify(
        self, product_id: int, change: StockChange
    ) -> tuple[StockRecord, StockRecord]:
        before = self._records.get(product_id)
        if before is None:
            raise StockNotFound(product_id)
        after = change(before)
        self._records[product_id] = after
        return before, after


def _to_record(row) -> StockRecord:
    return StockRecord(
        product_id=row.product_id,
        quantity=row.quantity,
        reorder_level=row.reorder_level,
    )


class SqlStockStore(StockStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, product_id: int) -> StockRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(stock_table).where(stock_table.c.product_id == product_id)
            )
            row = result.fetchone()
            return _to_record(row) if row else None

    async def add(self, record: StockRecord) -> StockRecord:
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    insert(stock_table).values(
                        product_id=record.product_id,
                        quantity=record.quantity,
                        reorder_level=record.reorder_level,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
        except IntegrityError as e:
            raise StockAlreadyExists(record.product_id) from e
        return record

    async def list_all(self) -> list[StockRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(stock_table).order_by(stock_table.c.product_id)
            )
            return [_to_record(row) for row in result.fetchall()]

    async def modify(
        self, product_id: int, change: StockChange
    ) -> tuple[StockRecord, StockRecord]:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                select(stock_table)
                .where(stock_table.c.product_id == product_id)
                .with_for_update()
            )
            row = result.fetchone()
            if row is None:
                raise StockNotFound(product_id)

            before = _to_record(row)
            after = change(before)
            await session.execute(
                update(stock_table)
                .where(stock_table.c.product_id == product_id)
                .values(
                    quantity=after.quantity,
                    reorder_level=after.reorder_level,
                    updated_at=datetime.now(timezone.utc),
                )
            )
        return before, after
