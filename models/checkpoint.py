from sqlalchemy import Column, Integer, String, DateTime, Index, BigInteger
from datetime import datetime, timezone
from models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncCheckpoint(Base):
    """
    Resume marker of the continuous sync, database backend.
    
    Purpose:
    - Resume the change feed after the last durably mirrored event
    - Alternative to the resume token file when the working directory
      is not persistent
    
    Design:
    - One row per stream
    - checkpoint_value is the opaque feed position token, overwritten
      wholesale on each save
    """
    __tablename__ = "sync_checkpoints"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    
    stream_name = Column(String(100), nullable=False)
    checkpoint_value = Column(String(255), nullable=True)
    
    # Statistics
    last_saved_at = Column(DateTime(timezone=True), nullable=True)
    total_saves = Column(BigInteger, default=0)
    
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    
    __table_args__ = (
        Index("idx_checkpoint_stream", "stream_name", unique=True),
    )
