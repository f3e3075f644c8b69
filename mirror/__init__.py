"""
Anonymizing mirror of the customers collection.

This package moves customer records from the source store into the sink
store with their PII replaced by deterministic pseudonyms.

Modules:
    anonymizer: Seeded pseudonym generation per record identity
    source: Insert feed and ordered scan over the source table
    sink: Duplicate-tolerant bulk insert and idempotent upsert into the sink
    checkpoint: Resume token persistence (file or database)
    pending: Queue between the feed consumer and the flusher
    feed: Change feed consumer
    flusher: Interval-driven batch flusher
    catchup: Full-history catch-up sync
    shutdown: Graceful shutdown coordinator
    runs: Sync run bookkeeping
    runner: Composition root for both operating modes
    cli: Command-line entry point

Architecture:
    Continuous sync:
        source feed → ChangeFeedConsumer (anonymize) → PendingQueue
        → BatchFlusher → sink, then checkpoint
    
    The checkpoint is saved only after the sink acknowledged the batch,
    so a crash between the two replays the batch. Replayed records are
    anonymized to the same bytes and the sink reports them as duplicates.
    
    Catch-up sync:
        source scan → anonymize → upsert, in bounded groups

Usage:
    pii-mirror                      # continuous
    pii-mirror --catch-up           # catch-up, then exit
    pii-mirror --catch-up --reset   # hard reset, then catch-up
"""

__all__ = [
    "Anonymizer",
    "CustomerSource",
    "AnonymizedCustomerSink",
    "FileCheckpointStore",
    "DatabaseCheckpointStore",
    "PendingQueue",
    "ChangeFeedConsumer",
    "BatchFlusher",
    "CatchUpSyncer",
    "ShutdownCoordinator",
    "SyncRunner",
]
