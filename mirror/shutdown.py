"""
Graceful shutdown of the continuous sync
"""

import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from mirror.checkpoint import CheckpointStore
from mirror.feed import FeedHandle
from mirror.flusher import BatchFlusher
import logging

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Order of shutdown:
    1. Stop the feed, so nothing new reaches the pending queue
    2. Wait for the in-flight flush (write and checkpoint) to finish
    3. Optionally flush what is still pending
    4. Close the checkpoint store and dispose the store engines
    
    Nothing is interrupted mid-write; a batch is either written and
    checkpointed, or left for redelivery after restart.
    """
    
    def __init__(self, drain_pending: bool = True):
        self.drain_pending = drain_pending
        self.reason: Optional[str] = None
        self._requested = asyncio.Event()
    
    @property
    def requested(self) -> bool:
        return self._requested.is_set()
    
    def request(self, reason: str = "signal"):
        """Ask for shutdown; safe to call from a signal handler, repeatedly"""
        if self._requested.is_set():
            logger.info(f"Shutdown already in progress (got {reason} again)")
            return
        self.reason = reason
        logger.info(f"Got {reason}. Graceful shutdown start")
        self._requested.set()
    
    @property
    def event(self) -> asyncio.Event:
        return self._requested
    
    async def wait(self):
        await self._requested.wait()
    
    async def drain(self, feed: Optional[FeedHandle], flusher: BatchFlusher) -> int:
        """
        Steps 1-3.
        
        Returns:
            Number of records still pending afterwards
        """
        if feed is not None:
            await feed.stop()
        
        await flusher.close()
        
        if self.drain_pending and len(flusher.queue):
            logger.info(f"Flushing {len(flusher.queue)} pending records before exit")
            await flusher.drain()
        
        left = len(flusher.queue)
        if left:
            logger.warning(f"{left} records left pending; they will be redelivered after restart")
        return left
    
    async def release(self, checkpoint_store: Optional[CheckpointStore], *engines: AsyncEngine):
        """Step 4"""
        if checkpoint_store is not None:
            await checkpoint_store.close()
        for engine in {id(e): e for e in engines}.values():
            await engine.dispose()
        logger.info("Graceful shutdown complete")
