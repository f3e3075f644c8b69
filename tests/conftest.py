"""
Pytest configuration and fixtures
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from mirror.sink import AnonymizedCustomerSink
from mirror.source import ChangeEvent, CustomerSource
from models.base import Base
from schemas.customer import Address, Customer

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def make_customer(
    index: int,
    email: Optional[str] = None,
    created_at: Optional[datetime] = None
) -> Customer:
    """Deterministic test customer number ``index``"""
    return Customer(
        id=f"{index:024x}",
        first_name=f"First{index}",
        last_name=f"Last{index}",
        email=email or f"customer{index}@corp.example.com",
        address=Address(
            line1=f"{index} Main Street",
            line2=f"Apt. {index}",
            postcode=f"{10000 + index}",
            city="Springfield",
            state="IL",
            country="US",
        ),
        created_at=created_at or BASE_TIME + timedelta(seconds=index),
    )


async def wait_until(predicate: Callable[[], object], timeout: float = 5.0, interval: float = 0.01):
    """Poll ``predicate`` (sync or async) until truthy"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = predicate()
        if asyncio.iscoroutine(value):
            value = await value
        if value:
            return value
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


class InMemorySource:
    """Source feed double: insert events ordered by position"""
    
    def __init__(self, customers: Optional[List[Customer]] = None):
        self.events: List[ChangeEvent] = []
        self.fail_with: Optional[Exception] = None
        for customer in customers or []:
            self.insert(customer)
    
    def insert(self, customer: Customer) -> ChangeEvent:
        last = max((e.position for e in self.events), default=0)
        return self.insert_at(customer, last + 1)
    
    def insert_at(self, customer: Customer, position: int) -> ChangeEvent:
        """Make an event visible at ``position``, possibly behind later ones"""
        event = ChangeEvent(customer, position)
        self.events.append(event)
        self.events.sort(key=lambda e: e.position)
        return event
    
    async def tail_position(self) -> int:
        return max((e.position for e in self.events), default=0)
    
    async def fetch_after(self, position: int, limit: int) -> List[ChangeEvent]:
        if self.fail_with is not None:
            raise self.fail_with
        return [e for e in self.events if e.position > position][:limit]


class RecordingCheckpointStore:
    """Checkpoint store double keeping every saved token"""
    
    def __init__(self, initial: Optional[str] = None, failures: int = 0):
        self.token = initial
        self.saved: List[str] = []
        self.failures = failures
        self.closed = False
    
    async def load(self) -> Optional[str]:
        return self.token
    
    async def save(self, token: str) -> None:
        from core.exceptions import CheckpointError
        if self.failures:
            self.failures -= 1
            raise CheckpointError("Simulated checkpoint failure", context={"checkpoint_value": token})
        self.token = token
        self.saved.append(token)
    
    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def customer_factory():
    return make_customer


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database with every table created"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'mirror_test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    yield engine
    
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def source(session_factory) -> CustomerSource:
    return CustomerSource(session_factory)


@pytest.fixture
def sink(session_factory) -> AnonymizedCustomerSink:
    return AnonymizedCustomerSink(session_factory)
