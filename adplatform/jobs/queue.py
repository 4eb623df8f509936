"""In-memory priority + delay queue for background jobs (single process).

Jobs become visible once their delay elapses and are then served by priority
(lower number first, FIFO within a priority). Ready and scheduled jobs live in
separate heaps so a far-future high-priority job never blocks a ready
low-priority one. Jobs exposing ``key()`` are de-duplicated: while one is
queued, enqueuing another with the same key is a no-op.
"""
from __future__ import annotations

import heapq
import threading
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from adplatform.config import QUEUE_SETTINGS
from adplatform.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int


def priority_map(settings: Mapping[str, Any]) -> dict[str, int]:
    configured = settings.get("priorities") or {"normal": 5}
    return {str(k): int(v) for k, v in dict(configured).items()}


def job_key(job: Any) -> Optional[str]:
    key = getattr(job, "key", None)
    return key() if callable(key) else None


class PriorityDelayQueue:
    def __init__(self, settings: Mapping[str, Any] = QUEUE_SETTINGS) -> None:
        self._priority_map = priority_map(settings)
        self._warn_depth = int(settings.get("warn_depth", 1000))
        self._max_in_memory = int(settings.get("max_in_memory", 5000))
        self._cv = threading.Condition(threading.RLock())
        self._ready: list[tuple[int, int, QueueItem]] = []
        self._scheduled: list[tuple[float, int, int, QueueItem]] = []
        self._keys: set[str] = set()
        self._seq = 0
        self._shutdown = False

    def _promote_due(self, now: float) -> None:
        while self._scheduled and self._scheduled[0][0] <= now:
            _, prio, seq, item = heapq.heappop(self._scheduled)
            heapq.heappush(self._ready, (prio, seq, item))

    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Optional[QueueItem]:
        """Queue ``job``. Returns None when an equal-keyed job is already waiting."""
        with self._cv:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            key = job_key(job)
            if key is not None and key in self._keys:
                logger.debug("Duplicate job ignored", job_key=key)
                return None
            if self.depth() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")

            now = time.time()
            self._seq += 1
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=self._seq,
            )
            if item.ready_at <= now:
                heapq.heappush(self._ready, (item.priority_value, item.seq, item))
            else:
                heapq.heappush(self._scheduled, (item.ready_at, item.priority_value, item.seq, item))
            if key is not None:
                self._keys.add(key)
            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            self._cv.notify()
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Pop the next ready job, or None on timeout / non-blocking miss / shutdown."""
        deadline = None if timeout is None else time.time() + timeout
        with self._cv:
            while True:
                now = time.time()
                self._promote_due(now)
                if self._ready:
                    _, _, item = heapq.heappop(self._ready)
                    key = job_key(item.job)
                    if key is not None:
                        self._keys.discard(key)
                    return item.job
                if self._shutdown or not block:
                    return None
                waits = []
                if deadline is not None:
                    if now >= deadline:
                        return None
                    waits.append(deadline - now)
                if self._scheduled:
                    waits.append(max(0.0, self._scheduled[0][0] - now))
                self._cv.wait(timeout=min(waits) if waits else None)

    def shutdown(self) -> None:
        with self._cv:
            self._shutdown = True
            self._cv.notify_all()

    def purge(self) -> None:
        """Drop every queued job (test isolation)."""
        with self._cv:
            self._ready.clear()
            self._scheduled.clear()
            self._keys.clear()
            self._cv.notify_all()

    def depth(self) -> int:
        return len(self._ready) + len(self._scheduled)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        with self._cv:
            return {
                "depth": self.depth(),
                "ready": len(self._ready),
                "scheduled": len(self._scheduled),
                "shutdown": self._shutdown,
            }


__all__ = ["PriorityDelayQueue", "QueueItem", "priority_map", "job_key"]
