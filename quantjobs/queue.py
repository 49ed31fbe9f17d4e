"""
In-memory priority queue of job ids waiting for a worker.

Strictly tiered: a higher tier always dequeues before a lower one and,
within a tier, entries leave in the order they arrived. There is no aging,
so sustained high-tier load can starve lower tiers.

The queue is ephemeral. Jobs are persisted as QUEUED before they are
enqueued, and JobService.restore_queue rebuilds the queue after a restart.
"""

import heapq
import itertools
import logging
import threading
from uuid import UUID

from quantjobs.constants import QueueTier
from quantjobs.db.models import utc_now
from quantjobs.types.job import QueueEntry

logger = logging.getLogger(__name__)


class PriorityJobQueue:
    """
    Tier-first, FIFO-within-tier queue of job ids.

    Thread-safe; every operation holds the queue's own lock and nothing else.
    """

    def __init__(self) -> None:
        self._heap: list[QueueEntry] = []
        self._entries: dict[UUID, QueueEntry] = {}
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def enqueue(self, job_id: UUID, priority: int) -> bool:
        """
        Add a job id at the given tier.

        Returns:
            False if the id was already queued (no-op), True otherwise.
        """
        with self._lock:
            if job_id in self._entries:
                return False
            seq = next(self._counter)
            entry = QueueEntry(
                sort_key=(-priority, seq),
                job_id=job_id,
                priority=priority,
                enqueued_at=utc_now(),
            )
            heapq.heappush(self._heap, entry)
            self._entries[job_id] = entry

        logger.debug(
            "Job enqueued",
            extra={"job_id": str(job_id), "priority": priority}
        )
        return True

    def dequeue(self) -> UUID | None:
        """Remove and return the highest-tier, oldest job id, or None."""
        with self._lock:
            while self._heap:
                entry = heapq.heappop(self._heap)
                # Entries removed by discard() are dropped lazily here
                if self._entries.get(entry.job_id) is entry:
                    del self._entries[entry.job_id]
                    return entry.job_id
            return None

    def discard(self, job_id: UUID) -> bool:
        """
        Remove a queued id without dequeuing it.

        Returns:
            True if the id was present.
        """
        with self._lock:
            return self._entries.pop(job_id, None) is not None

    def size(self, tier: int | None = None) -> int:
        """Number of queued ids, optionally for one tier only."""
        with self._lock:
            if tier is None:
                return len(self._entries)
            return sum(1 for e in self._entries.values() if e.priority == tier)

    def sizes_by_tier(self) -> dict[int, int]:
        """Queued ids per tier, for the queue depth gauge."""
        with self._lock:
            sizes = {int(tier): 0 for tier in QueueTier}
            for entry in self._entries.values():
                sizes[entry.priority] = sizes.get(entry.priority, 0) + 1
            return sizes

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._entries
