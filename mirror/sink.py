"""
Write anonymized customers into the sink with duplicate-tolerant inserts
and idempotent upserts
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import SinkWriteError, UpsertError
from models.customer import AnonymizedCustomer
from schemas.customer import Customer
import logging

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Columns an upsert rewrites; mirrored_at keeps the first write time
_UPSERT_COLUMNS = [
    "first_name", "last_name", "email",
    "address_line1", "address_line2", "postcode",
    "city", "state", "country", "created_at",
]


# Keeps each multi-row VALUES under driver bind-parameter limits
MAX_ROWS_PER_STATEMENT = 1000


def _chunks(rows: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    return [rows[i:i + MAX_ROWS_PER_STATEMENT] for i in range(0, len(rows), MAX_ROWS_PER_STATEMENT)]


@dataclass
class BulkWriteResult:
    """Outcome of an unordered bulk insert"""
    attempted: int
    inserted_ids: List[str] = field(default_factory=list)
    duplicate_ids: List[str] = field(default_factory=list)
    
    @property
    def inserted(self) -> int:
        return len(self.inserted_ids)
    
    @property
    def duplicates(self) -> int:
        return len(self.duplicate_ids)


class AnonymizedCustomerSink:
    """
    Load anonymized customers into ``customers_anonymized``.
    
    Ensures:
    - A record already present (same identity) is reported as a duplicate,
      never as an error and never written twice
    - Upserts are idempotent: applying the same group twice leaves the
      same rows
    - Each call is one transaction
    """
    
    table = AnonymizedCustomer.__table__
    
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
    
    def _insert(self, session: AsyncSession):
        dialect = session.bind.dialect.name
        try:
            return _INSERTS[dialect](self.table)
        except KeyError:
            raise SinkWriteError(
                "Sink dialect does not support ON CONFLICT",
                context={"dialect": dialect, "table_name": self.table.name}
            )
    
    @staticmethod
    def _rows(customers: Sequence[Customer]) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        return [{**customer.to_row(), "mirrored_at": now} for customer in customers]
    
    async def insert_many(self, customers: Sequence[Customer]) -> BulkWriteResult:
        """
        Unordered bulk insert.
        
        Rows whose identity already exists are skipped and listed in
        ``duplicate_ids``. Any other failure rolls back the whole
        statement and raises SinkWriteError.
        """
        if not customers:
            return BulkWriteResult(attempted=0)
        
        async with self.session_factory() as session:
            inserted = set()
            try:
                for rows in _chunks(self._rows(customers)):
                    stmt = (
                        self._insert(session)
                        .values(rows)
                        .on_conflict_do_nothing(index_elements=["id"])
                        .returning(self.table.c.id)
                    )
                    result = await session.execute(stmt)
                    inserted.update(result.scalars().all())
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise SinkWriteError(
                    "Bulk insert into sink failed",
                    context={
                        "table_name": self.table.name,
                        "operation": "INSERT",
                        "batch_size": len(customers)
                    },
                    original_exception=e
                )
        
        return BulkWriteResult(
            attempted=len(customers),
            inserted_ids=[c.id for c in customers if c.id in inserted],
            duplicate_ids=[c.id for c in customers if c.id not in inserted],
        )
    
    async def upsert_many(self, customers: Sequence[Customer]) -> int:
        """
        Insert-or-replace keyed by identity (INSERT ON CONFLICT UPDATE).
        
        Returns:
            Number of records written
        """
        if not customers:
            return 0
        
        # ON CONFLICT DO UPDATE may not touch the same row twice per statement
        unique = list({customer.id: customer for customer in customers}.values())
        
        async with self.session_factory() as session:
            try:
                for rows in _chunks(self._rows(unique)):
                    stmt = self._insert(session).values(rows)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["id"],
                        set_={name: stmt.excluded[name] for name in _UPSERT_COLUMNS}
                    )
                    await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise UpsertError(
                    "Upsert into sink failed",
                    context={
                        "table_name": self.table.name,
                        "batch_size": len(unique),
                        "first_id": unique[0].id,
                        "last_id": unique[-1].id
                    },
                    original_exception=e
                )
        
        logger.debug(f"Upserted {len(unique)} anonymized customers")
        return len(unique)
    
    async def delete_all(self) -> int:
        """Explicit hard reset of the sink"""
        async with self.session_factory() as session:
            try:
                result = await session.execute(delete(self.table))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise SinkWriteError(
                    "Failed to reset sink",
                    context={"table_name": self.table.name, "operation": "DELETE"},
                    original_exception=e
                )
        logger.warning(f"Deleted {result.rowcount} rows from {self.table.name}")
        return result.rowcount
    
    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(self.table))
            return result.scalar_one()
    
    async def fetch_all(self) -> List[Customer]:
        """Every mirrored record ordered by (created_at, id)"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(AnonymizedCustomer).order_by(AnonymizedCustomer.created_at, AnonymizedCustomer.id)
            )
            return [Customer.from_row(row) for row in result.scalars().all()]
