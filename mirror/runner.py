"""
Wires the stores and pipeline components together and runs one of the
two operating modes.
"""

import asyncio
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import Settings
from core.database import create_engine_for, create_session_factory, describe_url
from core.exceptions import SyncException
from mirror.anonymizer import Anonymizer
from mirror.catchup import CatchUpSyncer
from mirror.checkpoint import CheckpointStore, create_checkpoint_store
from mirror.feed import ChangeFeedConsumer, FeedHandle
from mirror.flusher import BatchFlusher
from mirror.pending import PendingQueue
from mirror.runs import RunTracker
from mirror.shutdown import ShutdownCoordinator
from mirror.sink import AnonymizedCustomerSink
from mirror.source import CustomerSource
from models.base import Base, SyncMode, SyncStatus
from models.checkpoint import SyncCheckpoint
from models.customer import AnonymizedCustomer, Customer
from models.sync_run import SyncRun
from schemas.customer import Customer as CustomerRecord
import logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130

SOURCE_TABLES = [Customer.__table__]
SINK_TABLES = [AnonymizedCustomer.__table__, SyncCheckpoint.__table__, SyncRun.__table__]


class SyncRunner:
    """
    Composition root for a sync process.
    
    Continuous mode:
        load checkpoint → start feed after it → start flush timer →
        wait for a shutdown request or a feed failure → drain → release
    
    Catch-up mode:
        scan and upsert everything → release
    """
    
    def __init__(
        self,
        source: CustomerSource,
        sink: AnonymizedCustomerSink,
        checkpoint_store: CheckpointStore,
        anonymize: Callable[[CustomerRecord], CustomerRecord],
        tracker: RunTracker,
        coordinator: Optional[ShutdownCoordinator] = None,
        source_engine: Optional[AsyncEngine] = None,
        sink_engine: Optional[AsyncEngine] = None,
        batch_size: int = 1000,
        flush_interval_ms: int = 1000,
        poll_interval_ms: int = 200,
        fetch_limit: int = 500,
        gap_timeout_ms: int = 2000,
        catchup_chunk_size: int = 1000
    ):
        self.source = source
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self.anonymize = anonymize
        self.tracker = tracker
        self.coordinator = coordinator or ShutdownCoordinator()
        self.source_engine = source_engine
        self.sink_engine = sink_engine
        self.batch_size = batch_size
        self.flush_interval_ms = flush_interval_ms
        self.poll_interval_ms = poll_interval_ms
        self.fetch_limit = fetch_limit
        self.gap_timeout_ms = gap_timeout_ms
        self.catchup_chunk_size = catchup_chunk_size
        
        self.consumer: Optional[ChangeFeedConsumer] = None
        self.flusher: Optional[BatchFlusher] = None
    
    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncRunner":
        source_engine = create_engine_for(settings.DATABASE_URL)
        if settings.sink_database_url == settings.DATABASE_URL:
            sink_engine = source_engine
        else:
            sink_engine = create_engine_for(settings.sink_database_url)
        
        source_sessions = create_session_factory(source_engine)
        sink_sessions = create_session_factory(sink_engine)
        
        logger.info(f"Source: {describe_url(settings.DATABASE_URL)}")
        logger.info(f"Sink: {describe_url(settings.sink_database_url)}")
        
        try:
            checkpoint_store = create_checkpoint_store(settings, sink_sessions)
        except SyncException:
            # Nothing has connected yet, so a synchronous dispose is enough
            for engine in {id(e): e for e in (source_engine, sink_engine)}.values():
                engine.sync_engine.dispose()
            raise
        
        return cls(
            source=CustomerSource(source_sessions),
            sink=AnonymizedCustomerSink(sink_sessions),
            checkpoint_store=checkpoint_store,
            anonymize=Anonymizer(
                salt=settings.ANONYMIZATION_SALT,
                token_length=settings.PSEUDONYM_LENGTH
            ),
            tracker=RunTracker(sink_sessions),
            coordinator=ShutdownCoordinator(drain_pending=settings.SHUTDOWN_DRAIN_PENDING),
            source_engine=source_engine,
            sink_engine=sink_engine,
            batch_size=settings.SYNC_BATCH_SIZE,
            flush_interval_ms=settings.SYNC_FLUSH_INTERVAL_MS,
            poll_interval_ms=settings.FEED_POLL_INTERVAL_MS,
            fetch_limit=settings.FEED_FETCH_LIMIT,
            gap_timeout_ms=settings.FEED_GAP_TIMEOUT_MS,
            catchup_chunk_size=settings.CATCHUP_CHUNK_SIZE
        )
    
    @property
    def engines(self) -> Sequence[AsyncEngine]:
        return [e for e in (self.source_engine, self.sink_engine) if e is not None]
    
    async def init_db(self):
        """Create source and sink tables that do not exist yet"""
        for engine, tables in ((self.source_engine, SOURCE_TABLES), (self.sink_engine, SINK_TABLES)):
            if engine is None:
                continue
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all, tables=tables)
        logger.info("Tables created successfully.")
    
    async def run_continuous(self) -> int:
        """Tail the source until shutdown is requested; returns an exit code"""
        logger.info("Real-time synchronization mode")
        
        queue = PendingQueue()
        self.consumer = ChangeFeedConsumer(
            self.source,
            queue,
            self.anonymize,
            poll_interval_ms=self.poll_interval_ms,
            fetch_limit=self.fetch_limit,
            gap_timeout_ms=self.gap_timeout_ms
        )
        self.flusher = BatchFlusher(
            queue,
            self.sink,
            self.checkpoint_store,
            batch_size=self.batch_size,
            interval_ms=self.flush_interval_ms
        )
        
        feed: Optional[FeedHandle] = None
        checkpoint_before: Optional[str] = None
        failure: Optional[BaseException] = None
        
        try:
            checkpoint_before = await self.checkpoint_store.load()
            await self.tracker.start(SyncMode.CONTINUOUS, checkpoint_before=checkpoint_before)
            
            feed = await self.consumer.start(checkpoint_before)
            self.flusher.start()
            
            shutdown_requested = asyncio.create_task(self.coordinator.wait())
            await asyncio.wait({feed.task, shutdown_requested}, return_when=asyncio.FIRST_COMPLETED)
            shutdown_requested.cancel()
            
            failure = feed.exception()
            if failure is not None:
                self.coordinator.request("feed failure")
        
        except SyncException as e:
            failure = e
            logger.error(
                f"Real-time synchronization failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            self.coordinator.request("fatal error")
        
        left = await self.coordinator.drain(feed, self.flusher)
        
        await self.tracker.complete(
            SyncStatus.FAILED if failure else SyncStatus.SUCCESS,
            records_processed=self.consumer.events_received,
            records_written=self.flusher.records_written,
            duplicates_tolerated=self.flusher.duplicates_tolerated,
            checkpoint_after=self.flusher.last_checkpoint or checkpoint_before,
            error_message=str(failure) if failure else (f"{left} records left pending" if left else None)
        )
        
        await self.coordinator.release(self.checkpoint_store, *self.engines)
        return EXIT_FATAL if failure else EXIT_OK
    
    async def run_catch_up(self, reset: bool = False) -> int:
        """Mirror the full source history; returns an exit code"""
        syncer = CatchUpSyncer(
            self.source,
            self.sink,
            self.anonymize,
            chunk_size=self.catchup_chunk_size,
            stop_event=self.coordinator.event
        )
        await self.tracker.start(SyncMode.CATCH_UP)
        
        try:
            result = await syncer.run(reset=reset)
        except (SyncException, SQLAlchemyError, OSError) as e:
            progress = syncer.result
            logger.error(
                f"Full synchronization aborted after {progress.records_upserted} upserts "
                f"(last id {progress.last_id}); safe to re-run: {e}"
            )
            await self.tracker.complete(
                SyncStatus.FAILED,
                records_processed=progress.records_processed,
                records_written=progress.records_upserted,
                error_message=str(e)
            )
            exit_code = EXIT_FATAL
        else:
            partial = result.interrupted or result.records_rejected > 0
            await self.tracker.complete(
                SyncStatus.PARTIAL if partial else SyncStatus.SUCCESS,
                records_processed=result.records_processed,
                records_written=result.records_upserted,
                error_message=(
                    f"{result.records_rejected} records rejected" if result.records_rejected else None
                )
            )
            exit_code = EXIT_INTERRUPTED if result.interrupted else EXIT_OK
        
        await self.coordinator.release(None, *self.engines)
        return exit_code
