"""
Batch flusher: moves pending anonymized records to the sink on a fixed
interval and advances the checkpoint after each successful write.
"""

import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.exceptions import SyncException
from mirror.checkpoint import CheckpointStore
from mirror.pending import PendingQueue
from mirror.sink import AnonymizedCustomerSink
import logging

logger = logging.getLogger(__name__)


class BatchFlusher:
    """
    Drain the pending queue into the sink, one batch per tick.
    
    Per batch:
    1. Take up to ``batch_size`` oldest items
    2. Unordered bulk insert; identities already in the sink are tolerated
    3. Save the resume token of the last item in the batch
    
    A failure in step 2 or 3 puts the batch back at the head of the queue
    and leaves the checkpoint where it was. Only one flush runs at a time;
    a tick that fires while a flush is in flight is skipped.
    """
    
    JOB_ID = "batch_flush"
    
    def __init__(
        self,
        queue: PendingQueue,
        sink: AnonymizedCustomerSink,
        checkpoint_store: CheckpointStore,
        batch_size: int = 1000,
        interval_ms: int = 1000
    ):
        self.queue = queue
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self.batch_size = batch_size
        self.interval_ms = interval_ms
        self.scheduler = AsyncIOScheduler()
        
        self.last_checkpoint: Optional[str] = None
        self.flushes = 0
        self.failed_flushes = 0
        self.records_written = 0
        self.duplicates_tolerated = 0
        
        self._flush_lock = asyncio.Lock()
        self._closed = False
    
    @property
    def in_flight(self) -> bool:
        return self._flush_lock.locked()
    
    def start(self):
        """Start the flush timer"""
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_ms / 1000),
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(
            f"Batch flusher started (batch size {self.batch_size}, "
            f"interval {self.interval_ms}ms)"
        )
    
    async def tick(self):
        """Timer callback; never raises"""
        if self._closed:
            return
        if self.in_flight:
            logger.debug("Previous flush still in flight, skipping tick")
            return
        if not len(self.queue):
            return
        
        try:
            await self.flush_once()
        except SyncException as e:
            logger.error(
                f"Flush aborted, checkpoint not advanced: {e}",
                extra={"error_context": e.to_dict()}
            )
        except Exception:
            logger.exception("Flush aborted by unexpected error, checkpoint not advanced")
    
    async def flush_once(self) -> int:
        """
        Flush one batch.
        
        Returns:
            Number of records flushed (0 if the queue was empty)
        
        Raises:
            SinkWriteError: Sink rejected the batch for a reason other than
                duplicate identities
            CheckpointError: Batch written but token not persisted
        """
        async with self._flush_lock:
            return await self._flush_batch()
    
    async def _flush_batch(self) -> int:
        batch = self.queue.take(self.batch_size)
        if not batch:
            return 0
        
        resume_token = batch[-1].resume_token
        
        try:
            result = await self.sink.insert_many([item.customer for item in batch])
            
            if result.duplicates:
                logger.warning(
                    f"Encountered {result.duplicates} duplicate key(s) in sink, continuing",
                    extra={"duplicate_ids": result.duplicate_ids[:10], "resume_token": resume_token}
                )
            
            await self.checkpoint_store.save(resume_token)
        except BaseException:
            self.queue.requeue_front(batch)
            self.failed_flushes += 1
            raise
        
        self.flushes += 1
        self.records_written += result.inserted
        self.duplicates_tolerated += result.duplicates
        self.last_checkpoint = resume_token
        
        logger.info(
            f"Inserted {result.inserted} anonymized customers, checkpoint advanced to {resume_token}",
            extra={
                "batch_size": len(batch),
                "inserted": result.inserted,
                "duplicates": result.duplicates,
                "resume_token": resume_token,
                "pending": len(self.queue),
                "peak_pending": self.queue.peak
            }
        )
        return len(batch)
    
    async def close(self):
        """
        Stop the timer and wait for an in-flight flush to finish.
        
        The flush is not interrupted: its write and checkpoint complete
        (or fail) before this returns.
        """
        self._closed = True
        # scheduler.shutdown() cancels running jobs: pause, then shut down
        # only once the tick-started flush has released the lock
        if self.scheduler.running:
            self.scheduler.pause()
        
        if self.in_flight:
            logger.info("Waiting for in-flight flush to complete")
        async with self._flush_lock:
            pass
        
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
    
    async def drain(self) -> int:
        """
        Flush everything still pending, batch by batch.
        
        Stops at the first failed batch; whatever remains is delivered
        again after restart.
        """
        flushed = 0
        while len(self.queue):
            try:
                count = await self.flush_once()
            except SyncException as e:
                logger.error(
                    f"Drain aborted, {len(self.queue)} records left pending: {e}",
                    extra={"error_context": e.to_dict()}
                )
                break
            if not count:
                break
            flushed += count
        return flushed
