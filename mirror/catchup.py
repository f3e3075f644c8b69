"""
Catch-up sync: reconcile the sink against the full source history.

Scans the source in (created_at, id) order, anonymizes every record and
upserts it into the sink in bounded groups. Because identities and
pseudonyms are both deterministic, a run that stops halfway can simply be
run again from the start. Records in the sink that are no longer in the
source are left alone; a hard reset has to be requested explicitly.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from core.exceptions import LoadError
from mirror.sink import AnonymizedCustomerSink
from mirror.source import CustomerSource
from schemas.customer import Customer
import logging

logger = logging.getLogger(__name__)


@dataclass
class CatchUpResult:
    """Progress of a catch-up run"""
    records_processed: int = 0
    records_upserted: int = 0
    records_rejected: int = 0
    last_id: Optional[str] = None
    interrupted: bool = False


class CatchUpSyncer:
    """
    Runs to completion, or until ``stop_event`` is set between groups.
    
    Errors:
    - A record the anonymizer rejects is logged and skipped
    - A failed upsert aborts the run; the UpsertError context carries the
      partial progress
    """
    
    def __init__(
        self,
        source: CustomerSource,
        sink: AnonymizedCustomerSink,
        anonymize: Callable[[Customer], Customer],
        chunk_size: int = 1000,
        stop_event: Optional[asyncio.Event] = None
    ):
        self.source = source
        self.sink = sink
        self.anonymize = anonymize
        self.chunk_size = chunk_size
        self.stop_event = stop_event
        self.result = CatchUpResult()
    
    def _stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()
    
    async def run(self, reset: bool = False) -> CatchUpResult:
        """
        Mirror every source record into the sink.
        
        Args:
            reset: Delete the whole sink first (operator hard reset)
        """
        logger.info("Full synchronization mode")
        self.result = result = CatchUpResult()
        
        if reset:
            await self.sink.delete_all()
        
        async for chunk in self.source.scan(self.chunk_size):
            if self._stop_requested():
                result.interrupted = True
                break
            
            group = []
            for customer in chunk:
                result.records_processed += 1
                try:
                    group.append(self.anonymize(customer))
                except Exception as e:
                    result.records_rejected += 1
                    logger.error(
                        f"Anonymization failed for record {customer.id}, skipping: {e}",
                        extra={"record_id": customer.id}
                    )
            
            try:
                result.records_upserted += await self.sink.upsert_many(group)
            except LoadError as e:
                e.context.update(
                    records_processed=result.records_processed,
                    records_upserted=result.records_upserted,
                    last_id=result.last_id
                )
                raise
            
            result.last_id = chunk[-1].id
            logger.info(
                f"Upserted {len(group)} anonymized customers (catch-up, "
                f"{result.records_upserted} so far)"
            )
        
        if result.interrupted:
            logger.warning(
                f"Full synchronization interrupted after {result.records_upserted} upserts "
                f"(last id {result.last_id}); safe to re-run"
            )
        else:
            logger.info(
                f"Full synchronization complete: {result.records_upserted} upserted, "
                f"{result.records_rejected} rejected"
            )
        return result
