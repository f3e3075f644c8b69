"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (SyncMode, SyncStatus)
    customer: Source customers and their anonymized mirror
    checkpoint: Resume marker for the database checkpoint backend
    sync_run: Sync invocation tracking and metrics
    identity: Time-ordered record identity generation

Usage:
    from models.customer import Customer, AnonymizedCustomer
    from models.base import SyncMode, SyncStatus

Relationships:
    - Customer → AnonymizedCustomer (one-to-one by id, no foreign key:
      the stores may live in different databases)
"""

__all__ = [
    "Base",
    "SyncMode",
    "SyncStatus",
    "Customer",
    "AnonymizedCustomer",
    "SyncCheckpoint",
    "SyncRun",
    "new_record_id",
]
