from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String
from sqlalchemy.orm import declared_attr
from datetime import datetime, timezone
from models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerColumns:
    """
    Columns shared by the source table and its anonymized mirror.
    
    The address is stored flat; schemas.customer.Customer nests it again.
    """
    
    # Identity: time-ordered, opaque (see models.identity)
    @declared_attr
    def id(cls):
        return Column(String(64), nullable=False, unique=True, index=True)
    
    # PII
    first_name = Column(String(200), nullable=False)
    last_name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=False)
    address_line1 = Column(String(500), nullable=False)
    address_line2 = Column(String(500), nullable=True)
    postcode = Column(String(50), nullable=False)
    
    # Non-PII, passed through unchanged
    city = Column(String(200), nullable=False)
    state = Column(String(100), nullable=False)
    country = Column(String(10), nullable=False)
    
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Customer(CustomerColumns, Base):
    """
    Source of truth: append-only customer records.
    
    Design:
    - seq is the insert-event position; it only grows, so "rows with
      seq > N" is the insert-only change feed after position N
    - Rows are never updated or deleted by this system
    """
    __tablename__ = "customers"
    
    seq = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )
    
    __table_args__ = (
        Index("idx_customers_created", "created_at", "id"),
    )


class AnonymizedCustomer(CustomerColumns, Base):
    """
    Mirror of customers with PII replaced by deterministic pseudonyms.
    
    Design:
    - Keyed by the source identity, so a replayed record collides with
      its earlier copy instead of being duplicated
    - mirrored_at records the first successful write
    """
    __tablename__ = "customers_anonymized"
    
    @declared_attr
    def id(cls):
        return Column(String(64), primary_key=True)
    
    mirrored_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    
    __table_args__ = (
        Index("idx_customers_anonymized_created", "created_at", "id"),
    )
