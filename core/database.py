"""
Database engine and session management with SQLAlchemy async
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_engine_for(url: str, echo: Optional[bool] = None) -> AsyncEngine:
    """Create an async engine for a source or sink store"""
    if echo is None:
        echo = settings.ENVIRONMENT == "development" and settings.LOG_LEVEL.upper() == "DEBUG"
    return create_async_engine(
        url,
        echo=echo,
        poolclass=NullPool,  # Connections are short-lived per statement group
        future=True
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to the given engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


def describe_url(url: str) -> str:
    """Strip credentials from a database URL for log output"""
    return url.split("@")[1] if "@" in url else url
