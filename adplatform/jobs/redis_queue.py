"""Redis-backed delay queue for link-sync jobs.

Jobs survive restarts, which matters for accounts that stay PENDING for days.

Redis layout:
 - list   ``<ready_key>``      serialized jobs ready to run (LPUSH / RPOP, FIFO)
 - zset   ``<scheduled_key>``  serialized jobs scored by ready-at epoch seconds
 - set    ``<ready_key>:keys`` job keys currently queued (de-duplication)

Whenever Redis is unreachable the queue keeps working against an in-memory
``PriorityDelayQueue`` and switches back once a health check succeeds.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Mapping, Optional

import redis

from adplatform.config import QUEUE_SETTINGS
from adplatform.jobs.link_sync_job import LinkSyncJob
from adplatform.jobs.queue import PriorityDelayQueue, QueueItem, job_key, priority_map
from adplatform.utils import get_logger

logger = get_logger(__name__)


class RedisQueue:
    def __init__(self, settings: Mapping[str, Any] = QUEUE_SETTINGS) -> None:
        self._redis_url = str(settings.get("redis_url", "redis://localhost:6379/0"))
        self._ready_key = str(settings.get("redis_ready_key", "adplatform:link_sync:ready"))
        self._scheduled_key = str(settings.get("redis_scheduled_key", "adplatform:link_sync:scheduled"))
        self._keys_key = f"{self._ready_key}:keys"
        self._timeout = float(settings.get("redis_health_check_timeout", 2.0))
        self._warn_depth = int(settings.get("warn_depth", 1000))
        self._priority_map = priority_map(settings)

        self._fallback = PriorityDelayQueue(settings)
        self._client: Optional[redis.Redis] = None
        self._active = False
        self._shutdown = False
        self._lock = threading.RLock()
        self._connect()

    # ------------------------------------------------------------ connection
    def _connect(self) -> None:
        try:
            self._client = redis.from_url(self._redis_url, socket_timeout=self._timeout)
            self._client.ping()
            self._active = True
            logger.info("Connected to Redis", url=self._redis_url)
        except (redis.RedisError, ConnectionError) as e:
            self._client = None
            self._active = False
            logger.warning("Redis unavailable, using in-memory queue", url=self._redis_url, error=str(e))

    def health_check(self) -> bool:
        with self._lock:
            if self._client is None:
                self._connect()
                return self._active
            try:
                self._client.ping()
            except (redis.RedisError, ConnectionError) as e:
                if self._active:
                    logger.warning("Redis connection lost, using in-memory queue", error=str(e))
                self._active = False
                return False
            if not self._active:
                logger.info("Redis connection restored")
            self._active = True
            return True

    def _degrade(self, operation: str, error: Exception) -> None:
        logger.error("Redis error", operation=operation, error=str(error))
        self._active = False

    # --------------------------------------------------------- serialization
    @staticmethod
    def _serialize(item: QueueItem) -> str:
        job = item.job
        return json.dumps({
            "job_type": type(job).__name__,
            "job": job.to_dict() if hasattr(job, "to_dict") else {"data": str(job)},
            "priority_label": item.priority_label,
            "enqueued_at": item.enqueued_at,
            "ready_at": item.ready_at,
        }, sort_keys=True)

    @staticmethod
    def _deserialize(raw: bytes | str) -> Any:
        data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        if data.get("job_type") == LinkSyncJob.__name__:
            return LinkSyncJob.from_dict(data["job"])
        logger.warning("Unknown job type encountered", job_type=data.get("job_type"))
        return data.get("job")

    # ------------------------------------------------------------ queue API
    def _promote_due(self) -> None:
        assert self._client is not None
        due = self._client.zrangebyscore(self._scheduled_key, 0, time.time())
        for member in due or []:
            # zrem wins exactly once per member, even with several workers promoting
            if self._client.zrem(self._scheduled_key, member):
                self._client.lpush(self._ready_key, member)

    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Optional[QueueItem]:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            if not self.health_check() or self._client is None:
                return self._fallback.enqueue(job, priority=priority, delay_seconds=delay_seconds)

            now = time.time()
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=int(now * 1000),
            )
            try:
                key = job_key(job)
                if key is not None and not self._client.sadd(self._keys_key, key):
                    logger.debug("Duplicate job ignored", job_key=key)
                    return None
                payload = self._serialize(item)
                if item.ready_at <= now:
                    self._client.lpush(self._ready_key, payload)
                else:
                    self._client.zadd(self._scheduled_key, {payload: item.ready_at})
            except redis.RedisError as e:
                self._degrade("enqueue", e)
                return self._fallback.enqueue(job, priority=priority, delay_seconds=delay_seconds)

            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        deadline = None if timeout is None else time.time() + timeout
        while True:
            with self._lock:
                if self._shutdown:
                    return None
                if not self.health_check() or self._client is None:
                    remaining = None if deadline is None else max(0.0, deadline - time.time())
                    return self._fallback.dequeue(block=block, timeout=remaining)
                try:
                    self._promote_due()
                    raw = self._client.rpop(self._ready_key)
                except redis.RedisError as e:
                    self._degrade("dequeue", e)
                    continue
            if raw is not None:
                job = self._deserialize(raw)
                key = job_key(job)
                if key is not None:
                    try:
                        self._client.srem(self._keys_key, key)
                    except redis.RedisError as e:
                        self._degrade("dequeue", e)
                return job
            if not block or (deadline is not None and time.time() >= deadline):
                return None
            time.sleep(0.2)

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._fallback.shutdown()

    def purge(self) -> None:
        with self._lock:
            self._fallback.purge()
            if not self.health_check() or self._client is None:
                return
            try:
                self._client.delete(self._ready_key, self._scheduled_key, self._keys_key)
            except redis.RedisError as e:
                self._degrade("purge", e)

    def depth(self) -> int:
        with self._lock:
            if not self._active or self._client is None:
                return self._fallback.depth()
            try:
                return int(self._client.llen(self._ready_key)) + int(self._client.zcard(self._scheduled_key))
            except (redis.RedisError, TypeError, ValueError) as e:
                self._degrade("depth", e)
                return self._fallback.depth()

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            if not self.health_check() or self._client is None:
                return {**self._fallback.snapshot(), "redis_active": False}
            try:
                ready = int(self._client.llen(self._ready_key))
                scheduled = int(self._client.zcard(self._scheduled_key))
            except (redis.RedisError, TypeError, ValueError) as e:
                self._degrade("snapshot", e)
                return {**self._fallback.snapshot(), "redis_active": False}
            return {
                "depth": ready + scheduled,
                "ready": ready,
                "scheduled": scheduled,
                "shutdown": self._shutdown,
                "redis_active": True,
                "redis_url": self._redis_url,
            }


__all__ = ["RedisQueue"]
