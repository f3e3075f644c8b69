"""
Sync run bookkeeping in the ``sync_runs`` table
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.base import SyncMode, SyncStatus
from models.sync_run import SyncRun
import logging
import uuid

logger = logging.getLogger(__name__)


class RunTracker:
    """
    Records one SyncRun row per invocation.
    
    Bookkeeping failures are logged and swallowed so they never replace
    the outcome of the sync itself.
    """
    
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self.run: Optional[SyncRun] = None
    
    async def start(self, mode: SyncMode, checkpoint_before: Optional[str] = None) -> Optional[SyncRun]:
        """Create the run record"""
        run = SyncRun(
            run_id=uuid.uuid4(),
            mode=mode,
            status=SyncStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
            checkpoint_before=checkpoint_before
        )
        try:
            async with self.session_factory() as session:
                session.add(run)
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not record sync run start: {e}")
            return None
        
        self.run = run
        logger.info(f"Sync run {run.run_id} started ({mode.value})")
        return run
    
    async def complete(
        self,
        status: SyncStatus,
        records_processed: int = 0,
        records_written: int = 0,
        duplicates_tolerated: int = 0,
        checkpoint_after: Optional[str] = None,
        error_message: Optional[str] = None
    ):
        """Complete the run with statistics"""
        if self.run is None:
            return
        
        run = self.run
        run.status = status
        run.completed_at = datetime.now(timezone.utc)
        run.duration_seconds = (run.completed_at - run.started_at).total_seconds()
        run.records_processed = records_processed
        run.records_written = records_written
        run.duplicates_tolerated = duplicates_tolerated
        run.checkpoint_after = checkpoint_after
        run.error_message = error_message
        
        try:
            async with self.session_factory() as session:
                await session.merge(run)
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not record sync run completion: {e}")
            return
        
        logger.info(
            f"Sync run {run.run_id} finished: {status.value} - "
            f"processed={records_processed}, written={records_written}, "
            f"duplicates={duplicates_tolerated}"
        )
