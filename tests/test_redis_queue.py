"""Tests for the Redis-backed link sync queue against a mocked Redis client.

The mock keeps real list / sorted-set / set semantics for the handful of
commands the queue uses, so ordering, delays and de-duplication are exercised
without a server.
"""
import time
from unittest.mock import MagicMock, patch

import pytest
import redis

from adplatform.config import QUEUE_SETTINGS
from adplatform.jobs.link_sync_job import LinkSyncJob
from adplatform.jobs.queue import PriorityDelayQueue
from adplatform.jobs.redis_queue import RedisQueue
from adplatform.jobs.worker_link_sync import create_queue

REDIS_SETTINGS = {**QUEUE_SETTINGS, "use_redis": True, "redis_url": "redis://localhost:6379/0"}


def _fake_redis_client():
    lists: dict = {}
    zsets: dict = {}
    sets: dict = {}
    client = MagicMock()
    client.ping.return_value = True

    def lpush(key, value):
        lists.setdefault(key, []).insert(0, value)
        return len(lists[key])

    def rpop(key):
        items = lists.get(key) or []
        return items.pop() if items else None

    def llen(key):
        return len(lists.get(key, []))

    def zadd(key, mapping):
        zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zrangebyscore(key, low, high):
        members = zsets.get(key, {})
        return [m for m, score in sorted(members.items(), key=lambda kv: kv[1]) if low <= score <= high]

    def zrem(key, member):
        return 1 if zsets.get(key, {}).pop(member, None) is not None else 0

    def zcard(key):
        return len(zsets.get(key, {}))

    def sadd(key, member):
        bucket = sets.setdefault(key, set())
        if member in bucket:
            return 0
        bucket.add(member)
        return 1

    def srem(key, member):
        bucket = sets.get(key, set())
        if member in bucket:
            bucket.discard(member)
            return 1
        return 0

    def delete(*keys):
        for key in keys:
            lists.pop(key, None)
            zsets.pop(key, None)
            sets.pop(key, None)
        return len(keys)

    client.lpush.side_effect = lpush
    client.rpop.side_effect = rpop
    client.llen.side_effect = llen
    client.zadd.side_effect = zadd
    client.zrangebyscore.side_effect = zrangebyscore
    client.zrem.side_effect = zrem
    client.zcard.side_effect = zcard
    client.sadd.side_effect = sadd
    client.srem.side_effect = srem
    client.delete.side_effect = delete
    return client


@pytest.fixture
def mock_redis():
    with patch("redis.from_url") as from_url:
        client = _fake_redis_client()
        from_url.return_value = client
        yield client


@pytest.fixture
def mock_redis_unavailable():
    with patch("redis.from_url") as from_url:
        from_url.side_effect = redis.ConnectionError("Connection refused")
        yield from_url


@pytest.fixture
def redis_queue(mock_redis):
    queue = RedisQueue(REDIS_SETTINGS)
    yield queue
    queue.purge()


def test_redis_queue_operations(redis_queue):
    item = redis_queue.enqueue(LinkSyncJob(user_id=1))
    assert item is not None
    assert redis_queue.depth() == 1

    result = redis_queue.dequeue(block=False)
    assert isinstance(result, LinkSyncJob)
    assert result.user_id == 1
    assert redis_queue.depth() == 0


def test_redis_queue_is_fifo(redis_queue):
    for user_id in (1, 2, 3):
        redis_queue.enqueue(LinkSyncJob(user_id=user_id))
    assert [redis_queue.dequeue(block=False).user_id for _ in range(3)] == [1, 2, 3]


def test_redis_queue_drops_duplicate_user(redis_queue, mock_redis):
    assert redis_queue.enqueue(LinkSyncJob(user_id=5)) is not None
    assert redis_queue.enqueue(LinkSyncJob(user_id=5)) is None
    assert redis_queue.depth() == 1

    redis_queue.dequeue(block=False)
    mock_redis.srem.assert_called_with("adplatform:link_sync:ready:keys", "link_sync:5")
    assert redis_queue.enqueue(LinkSyncJob(user_id=5, attempt=2)) is not None


def test_redis_queue_with_delayed_jobs(redis_queue):
    redis_queue.enqueue(LinkSyncJob(user_id=2), delay_seconds=0.5)
    snap = redis_queue.snapshot()
    assert snap["scheduled"] == 1
    assert snap["ready"] == 0
    assert snap["redis_active"] is True

    assert redis_queue.dequeue(block=False) is None
    time.sleep(0.7)
    result = redis_queue.dequeue(block=False)
    assert isinstance(result, LinkSyncJob)
    assert result.user_id == 2
    assert redis_queue.depth() == 0


def test_redis_queue_keeps_attempt_and_correlation(redis_queue):
    job = LinkSyncJob(user_id=9, attempt=4)
    redis_queue.enqueue(job, priority="low")
    restored = redis_queue.dequeue(block=False)
    assert restored.attempt == 4
    assert restored.correlation_id == job.correlation_id


def test_redis_queue_fallback(mock_redis_unavailable):
    queue = RedisQueue(REDIS_SETTINGS)
    assert queue.health_check() is False

    queue.enqueue(LinkSyncJob(user_id=1))
    assert queue.depth() == 1
    result = queue.dequeue(block=False)
    assert isinstance(result, LinkSyncJob)
    assert queue.snapshot()["redis_active"] is False


def test_redis_error_mid_flight_degrades_to_memory(redis_queue, mock_redis):
    mock_redis.lpush.side_effect = redis.ConnectionError("lost")
    item = redis_queue.enqueue(LinkSyncJob(user_id=3))
    assert item is not None
    mock_redis.ping.side_effect = redis.ConnectionError("lost")
    assert redis_queue.dequeue(block=False).user_id == 3


def test_create_queue_with_redis_available(mock_redis):
    queue = create_queue(REDIS_SETTINGS)
    assert isinstance(queue, RedisQueue)


def test_create_queue_with_redis_unavailable(mock_redis_unavailable):
    queue = create_queue(REDIS_SETTINGS)
    assert isinstance(queue, PriorityDelayQueue)


def test_create_queue_without_redis():
    assert isinstance(create_queue({**QUEUE_SETTINGS, "use_redis": False}), PriorityDelayQueue)
