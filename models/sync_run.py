from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index, Uuid
from datetime import datetime, timezone
import uuid
from models.base import Base, SyncMode, SyncStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncRun(Base):
    """
    Tracks metadata for each sync invocation.
    
    Purpose:
    - Audit trail of continuous and catch-up runs
    - Partial progress of an aborted catch-up (safe to re-run)
    - Checkpoint movement per continuous run
    """
    __tablename__ = "sync_runs"
    
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)
    
    mode = Column(Enum(SyncMode), nullable=False, index=True)
    status = Column(Enum(SyncStatus), default=SyncStatus.PENDING, nullable=False, index=True)
    
    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)
    
    # Statistics
    records_processed = Column(Integer, default=0)
    records_written = Column(Integer, default=0)
    duplicates_tolerated = Column(Integer, default=0)
    
    # Checkpoint info
    checkpoint_before = Column(String(255), nullable=True)
    checkpoint_after = Column(String(255), nullable=True)
    
    error_message = Column(Text, nullable=True)
    
    __table_args__ = (
        Index("idx_sync_run_mode_started", "mode", "started_at"),
    )
