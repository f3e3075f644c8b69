"""
In-memory hand-off between the change feed consumer and the batch flusher
"""

from dataclasses import dataclass
from typing import List, Sequence

from schemas.customer import Customer


@dataclass(frozen=True)
class PendingItem:
    """An anonymized record and the feed position of the event that produced it"""
    customer: Customer
    resume_token: str


class PendingQueue:
    """
    FIFO of PendingItems.
    
    The consumer appends, the flusher takes from the head. Both run on the
    same event loop, and no method awaits, so each call is atomic with
    respect to the other side.
    """
    
    def __init__(self):
        self._items: List[PendingItem] = []
        self.peak = 0
    
    def __len__(self) -> int:
        return len(self._items)
    
    def append(self, item: PendingItem) -> None:
        self._items.append(item)
        if len(self._items) > self.peak:
            self.peak = len(self._items)
    
    def take(self, limit: int) -> List[PendingItem]:
        """Remove and return up to ``limit`` oldest items"""
        if limit < 1 or not self._items:
            return []
        items = self._items
        batch, self._items = items[:limit], items[limit:]
        return batch
    
    def requeue_front(self, items: Sequence[PendingItem]) -> None:
        """Put a batch that failed to flush back ahead of newer items"""
        if items:
            self._items = list(items) + self._items
