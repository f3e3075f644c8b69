from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class SyncMode(str, enum.Enum):
    """Operating mode of a sync run"""
    CONTINUOUS = "continuous"
    CATCH_UP = "catch_up"


class SyncStatus(str, enum.Enum):
    """Sync run status"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
