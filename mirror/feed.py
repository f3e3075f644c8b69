"""
Change feed consumer: tails inserts on the source, anonymizes each record
and hands it to the pending queue together with its resume token.
"""

import asyncio
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import FeedConnectionError, FeedError
from mirror.pending import PendingItem, PendingQueue
from mirror.source import ChangeEvent, CustomerSource, parse_token
from schemas.customer import Customer
import logging

logger = logging.getLogger(__name__)

Anonymize = Callable[[Customer], Customer]


class FeedHandle:
    """A running feed subscription"""
    
    def __init__(self, consumer: "ChangeFeedConsumer", task: asyncio.Task):
        self._consumer = consumer
        self.task = task
    
    @property
    def position(self) -> Optional[str]:
        """Resume token of the last event handed to the queue"""
        return self._consumer.last_token
    
    def done(self) -> bool:
        return self.task.done()
    
    def exception(self) -> Optional[BaseException]:
        """Error the feed stopped with, if any"""
        if not self.task.done() or self.task.cancelled():
            return None
        return self.task.exception()
    
    async def wait(self) -> None:
        """Return when the feed stops; raises the error it stopped with"""
        await asyncio.shield(self.task)
    
    async def stop(self) -> None:
        """
        Unsubscribe. Safe to call any number of times, before or after
        any number of events, and after the feed has failed.
        """
        await self._consumer.stop()


class ChangeFeedConsumer:
    """
    Tail the source insert feed.
    
    Each event is anonymized and appended to the queue without waiting on
    the flusher, so a slow sink never slows down reading the feed.
    
    Errors:
    - A record the anonymizer rejects is logged and skipped
    - A feed read error stops the consumer; it is not retried in-process.
      Restarting resumes from the last checkpoint.
    - Positions past a hole in the feed wait up to ``gap_timeout_ms`` for
      the hole to fill, so the checkpoint never passes a late commit
    """
    
    def __init__(
        self,
        source: CustomerSource,
        queue: PendingQueue,
        anonymize: Anonymize,
        poll_interval_ms: int = 200,
        fetch_limit: int = 500,
        gap_timeout_ms: int = 2000
    ):
        self.source = source
        self.queue = queue
        self.anonymize = anonymize
        self.poll_interval = poll_interval_ms / 1000
        self.fetch_limit = fetch_limit
        self.gap_timeout = gap_timeout_ms / 1000
        
        self.last_token: Optional[str] = None
        self.events_received = 0
        self.records_enqueued = 0
        self.records_rejected = 0
        self.gaps_skipped = 0
        
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._gap_at: Optional[int] = None
        self._gap_since = 0.0
    
    async def start(self, after_token: Optional[str] = None) -> FeedHandle:
        """
        Subscribe after ``after_token``, or at the current tail when no
        token is given (history is the catch-up syncer's job).
        """
        if self._task is not None:
            raise FeedError("Change feed consumer already started")
        
        if after_token is not None:
            try:
                position = parse_token(after_token)
            except ValueError as e:
                raise FeedError(
                    "Invalid resume token",
                    context={"position": after_token, "operation": "resume"},
                    original_exception=e
                )
            logger.info(f"Subscribing to change feed after position {position}")
        else:
            try:
                position = await self.source.tail_position()
            except (SQLAlchemyError, OSError) as e:
                raise FeedConnectionError(
                    "Failed to locate change feed tail",
                    context={"operation": "tail"},
                    original_exception=e
                )
            logger.info(f"Subscribing to change feed at current tail (position {position})")
        
        self.last_token = after_token
        self._task = asyncio.create_task(self._consume(position), name="change-feed")
        return FeedHandle(self, self._task)
    
    async def _consume(self, position: int) -> None:
        while not self._stopping.is_set():
            try:
                events = await self.source.fetch_after(position, self.fetch_limit)
            except (SQLAlchemyError, OSError) as e:
                error = FeedConnectionError(
                    "Change feed read failed",
                    context={"position": self.last_token, "operation": "fetch"},
                    original_exception=e
                )
                logger.error(str(error), extra={"error_context": error.to_dict()})
                raise error
            
            # Events read after stop() are dropped; they are not checkpointed
            # and will be delivered again on the next start
            if self._stopping.is_set():
                break
            
            ready = self._contiguous(position, events)
            for event in ready:
                self._handle(event)
                position = event.position
            
            if len(ready) < len(events) or len(events) < self.fetch_limit:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
    
    def _contiguous(self, position: int, events: List[ChangeEvent]) -> List[ChangeEvent]:
        """
        Leading events with no hole in the positions after ``position``.
        
        With concurrent writers a lower position can become visible after a
        higher one. Events past a hole are held back until it fills or has
        been open for ``gap_timeout``; an insert that rolled back leaves a
        hole that never fills.
        """
        now = asyncio.get_running_loop().time()
        expected = position + 1
        for index, event in enumerate(events):
            if event.position != expected:
                if self._gap_at != expected:
                    self._gap_at, self._gap_since = expected, now
                if now - self._gap_since < self.gap_timeout:
                    logger.debug(f"Waiting for feed positions {expected}-{event.position - 1}")
                    return events[:index]
                logger.warning(
                    f"Feed positions {expected}-{event.position - 1} never became visible, skipping",
                    extra={"position": str(expected - 1), "next_position": event.resume_token}
                )
                self.gaps_skipped += 1
            expected = event.position + 1
        return events
    
    def _handle(self, event: ChangeEvent) -> None:
        self.events_received += 1
        self.last_token = event.resume_token
        try:
            anonymized = self.anonymize(event.customer)
        except Exception as e:
            self.records_rejected += 1
            logger.error(
                f"Anonymization failed for record {event.customer.id}, skipping: {e}",
                extra={"record_id": event.customer.id, "position": event.resume_token}
            )
            return
        
        self.queue.append(PendingItem(customer=anonymized, resume_token=event.resume_token))
        self.records_enqueued += 1
    
    async def stop(self) -> None:
        self._stopping.set()
        task = self._task
        if task is None or task.done():
            return
        # Reads are side-effect free; wake the task even if it is mid-query
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except FeedError:
            # Already logged by the consumer; surfaced through FeedHandle.exception()
            pass
        logger.info(
            f"Change feed stopped after {self.events_received} events "
            f"({self.records_enqueued} enqueued, {self.records_rejected} rejected)"
        )
