"""
Unit tests for the change feed consumer
"""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import FeedConnectionError, FeedError
from mirror.anonymizer import Anonymizer
from mirror.feed import ChangeFeedConsumer
from mirror.pending import PendingQueue
from tests.conftest import InMemorySource, make_customer, wait_until


@pytest.fixture
def anonymizer():
    return Anonymizer(salt="feed-tests")


def _consumer(source, queue, anonymize, **kwargs):
    kwargs.setdefault("poll_interval_ms", 10)
    kwargs.setdefault("fetch_limit", 100)
    return ChangeFeedConsumer(source, queue, anonymize, **kwargs)


class TestSubscribe:
    
    @pytest.mark.asyncio
    async def test_no_token_starts_at_tail(self, anonymizer):
        source = InMemorySource([make_customer(1), make_customer(2)])
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer)
        
        handle = await consumer.start()
        await asyncio.sleep(0.05)
        assert len(queue) == 0
        
        source.insert(make_customer(3))
        await wait_until(lambda: len(queue) == 1)
        await handle.stop()
        
        [item] = queue.take(10)
        assert item.resume_token == "3"
        assert item.customer == anonymizer(make_customer(3))
    
    @pytest.mark.asyncio
    async def test_resumes_after_token_in_order(self, anonymizer):
        source = InMemorySource([make_customer(i) for i in range(1, 6)])
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer)
        
        handle = await consumer.start("2")
        await wait_until(lambda: len(queue) == 3)
        await handle.stop()
        
        items = queue.take(10)
        assert [i.resume_token for i in items] == ["3", "4", "5"]
        assert [i.customer.id for i in items] == [make_customer(i).id for i in (3, 4, 5)]
        assert handle.position == "5"
    
    @pytest.mark.asyncio
    async def test_pages_through_backlog(self, anonymizer):
        source = InMemorySource([make_customer(i) for i in range(1, 26)])
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer, fetch_limit=10)
        
        handle = await consumer.start("0")
        await wait_until(lambda: len(queue) == 25)
        await handle.stop()
        
        assert [i.resume_token for i in queue.take(100)] == [str(i) for i in range(1, 26)]
    
    @pytest.mark.asyncio
    async def test_invalid_token_raises(self, anonymizer):
        consumer = _consumer(InMemorySource(), PendingQueue(), anonymizer)
        
        with pytest.raises(FeedError):
            await consumer.start("not-a-position")
    
    @pytest.mark.asyncio
    async def test_tail_lookup_failure_raises_connection_error(self, anonymizer):
        source = InMemorySource()
        
        async def broken_tail():
            raise OSError("connection refused")
        
        source.tail_position = broken_tail
        consumer = _consumer(source, PendingQueue(), anonymizer)
        
        with pytest.raises(FeedConnectionError):
            await consumer.start()
    
    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, anonymizer):
        consumer = _consumer(InMemorySource(), PendingQueue(), anonymizer)
        handle = await consumer.start("0")
        try:
            with pytest.raises(FeedError):
                await consumer.start("0")
        finally:
            await handle.stop()


class TestEventHandling:
    
    @pytest.mark.asyncio
    async def test_rejected_record_is_skipped(self, anonymizer):
        source = InMemorySource([
            make_customer(1),
            make_customer(2, email="no-at-sign"),
            make_customer(3),
        ])
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer)
        
        handle = await consumer.start("0")
        await wait_until(lambda: consumer.events_received == 3)
        await handle.stop()
        
        assert [i.resume_token for i in queue.take(10)] == ["1", "3"]
        assert consumer.records_rejected == 1
        assert consumer.records_enqueued == 2
        assert handle.position == "3"
    
    @pytest.mark.asyncio
    async def test_queue_holds_only_anonymized_records(self, anonymizer):
        source = InMemorySource([make_customer(1)])
        queue = PendingQueue()
        handle = await _consumer(source, queue, anonymizer).start("0")
        await wait_until(lambda: len(queue) == 1)
        await handle.stop()
        
        [item] = queue.take(1)
        assert item.customer.first_name != "First1"
        assert item.customer.email.endswith("@corp.example.com")


class TestStop:
    
    @pytest.mark.asyncio
    async def test_stop_with_zero_events(self, anonymizer):
        handle = await _consumer(InMemorySource(), PendingQueue(), anonymizer).start()
        
        await handle.stop()
        
        assert handle.done()
        assert handle.exception() is None
    
    @pytest.mark.asyncio
    async def test_stop_twice(self, anonymizer):
        handle = await _consumer(InMemorySource([make_customer(1)]), PendingQueue(), anonymizer).start("0")
        
        await handle.stop()
        await handle.stop()
        
        assert handle.done()
    
    @pytest.mark.asyncio
    async def test_nothing_enqueued_after_stop(self, anonymizer):
        source = InMemorySource()
        queue = PendingQueue()
        handle = await _consumer(source, queue, anonymizer).start("0")
        await handle.stop()
        
        source.insert(make_customer(1))
        await asyncio.sleep(0.05)
        
        assert len(queue) == 0


class TestFeedErrors:
    
    @pytest.mark.asyncio
    async def test_read_error_stops_feed(self, anonymizer):
        source = InMemorySource()
        consumer = _consumer(source, PendingQueue(), anonymizer)
        handle = await consumer.start("0")
        
        source.fail_with = OperationalError("SELECT", {}, Exception("server closed the connection"))
        await wait_until(handle.done)
        
        error = handle.exception()
        assert isinstance(error, FeedConnectionError)
        assert error.context["operation"] == "fetch"
        with pytest.raises(FeedConnectionError):
            await handle.wait()
        
        # stopping a failed feed is still safe
        await handle.stop()


class TestPositionGaps:
    
    @pytest.mark.asyncio
    async def test_late_commit_delivered_in_position_order(self, anonymizer):
        source = InMemorySource([make_customer(1)])
        source.insert_at(make_customer(3), 3)
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer, gap_timeout_ms=5000)
        
        handle = await consumer.start("0")
        await wait_until(lambda: len(queue) == 1)
        await asyncio.sleep(0.05)
        assert len(queue) == 1
        assert handle.position == "1"
        
        source.insert_at(make_customer(2), 2)
        await wait_until(lambda: len(queue) == 3)
        await handle.stop()
        
        assert [i.resume_token for i in queue.take(10)] == ["1", "2", "3"]
        assert consumer.gaps_skipped == 0
    
    @pytest.mark.asyncio
    async def test_hole_that_never_fills_is_skipped_after_timeout(self, anonymizer):
        source = InMemorySource([make_customer(1)])
        source.insert_at(make_customer(3), 3)
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer, gap_timeout_ms=100)
        
        handle = await consumer.start("0")
        await wait_until(lambda: len(queue) == 2)
        await handle.stop()
        
        assert [i.resume_token for i in queue.take(10)] == ["1", "3"]
        assert consumer.gaps_skipped == 1
    
    @pytest.mark.asyncio
    async def test_zero_timeout_does_not_hold_events(self, anonymizer):
        source = InMemorySource()
        source.insert_at(make_customer(5), 5)
        queue = PendingQueue()
        consumer = _consumer(source, queue, anonymizer, gap_timeout_ms=0)
        
        handle = await consumer.start("0")
        await wait_until(lambda: len(queue) == 1)
        await handle.stop()
        
        assert queue.take(1)[0].resume_token == "5"
