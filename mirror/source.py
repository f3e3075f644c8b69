"""
Read access to the source customers table: insert feed and ordered scan
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy import and_, func, insert, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.customer import Customer as CustomerRow
from schemas.customer import Customer
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """One insert on the source, at feed position ``position``"""
    customer: Customer
    position: int
    
    @property
    def resume_token(self) -> str:
        return str(self.position)


def parse_token(token: str) -> int:
    """Feed position encoded in a resume token"""
    try:
        return int(token)
    except (TypeError, ValueError):
        raise ValueError(f"Not a feed resume token: {token!r}")


class CustomerSource:
    """
    Source store over the ``customers`` table.
    
    The insert-only change feed is the table read in ``seq`` order: every
    row is an insert event and its ``seq`` is the position. Rows are never
    updated or deleted, so there are no other event kinds to filter out.
    """
    
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
    
    async def tail_position(self) -> int:
        """Position of the newest insert, 0 for an empty table"""
        async with self.session_factory() as session:
            result = await session.execute(select(func.max(CustomerRow.seq)))
            return result.scalar_one_or_none() or 0
    
    async def fetch_after(self, position: int, limit: int) -> List[ChangeEvent]:
        """Insert events strictly after ``position``, oldest first"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(CustomerRow)
                .where(CustomerRow.seq > position)
                .order_by(CustomerRow.seq)
                .limit(limit)
            )
            rows = result.scalars().all()
        return [ChangeEvent(Customer.from_row(row), row.seq) for row in rows]
    
    async def scan(self, chunk_size: int) -> AsyncIterator[List[Customer]]:
        """
        All records ordered by (created_at, id), in chunks.
        
        Keyset pagination: each chunk is a separate short query, so a long
        catch-up does not hold a cursor open on the source.
        """
        last: Optional[CustomerRow] = None
        while True:
            stmt = select(CustomerRow).order_by(CustomerRow.created_at, CustomerRow.id).limit(chunk_size)
            if last is not None:
                stmt = stmt.where(
                    or_(
                        CustomerRow.created_at > last.created_at,
                        and_(
                            CustomerRow.created_at == last.created_at,
                            CustomerRow.id > last.id
                        )
                    )
                )
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
            
            if not rows:
                return
            
            yield [Customer.from_row(row) for row in rows]
            
            if len(rows) < chunk_size:
                return
            last = rows[-1]
    
    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(CustomerRow))
            return result.scalar_one()
    
    async def insert_many(self, customers: Sequence[Customer]) -> int:
        """Append records; used by the load generator and tests"""
        if not customers:
            return 0
        async with self.session_factory() as session:
            await session.execute(
                insert(CustomerRow.__table__),
                [customer.to_row() for customer in customers]
            )
            await session.commit()
        return len(customers)
