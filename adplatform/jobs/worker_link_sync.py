"""Background worker polling the ad platform for PENDING account links."""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from sqlalchemy.orm import Session

from adplatform.config import LINK_SYNC_SETTINGS, QUEUE_SETTINGS
from adplatform.database import SessionLocal
from adplatform.integrations.base import AdAccountGateway
from adplatform.jobs.link_sync_job import LinkSyncJob
from adplatform.jobs.queue import PriorityDelayQueue
from adplatform.jobs.redis_queue import RedisQueue
from adplatform.models.db.enums import LinkStatus
from adplatform.services.link_status_reconciler import LinkStatusReconciler
from adplatform.services.repository import Repository
from adplatform.utils import get_logger
from adplatform.utils.backoff import compute_backoff_seconds

logger = get_logger(__name__)


class QueueProtocol(Protocol):
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Any: ...
    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any: ...
    def shutdown(self) -> None: ...
    def snapshot(self) -> dict: ...


class LinkSyncWorker:
    """Runs ``LinkStatusReconciler.reconcile`` for queued users.

    An account that is still PENDING after a check is re-queued with
    exponential backoff until ``max_attempts`` checks have been made. A LINKED
    account is checked again after ``linked_recheck_seconds`` so a link revoked
    on the ad platform side is noticed.
    """

    def __init__(
        self,
        queue: QueueProtocol,
        gateway: AdAccountGateway,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Mapping[str, Any] = LINK_SYNC_SETTINGS,
    ):
        self.queue = queue
        self.gateway = gateway
        self.session_factory = session_factory
        self.max_attempts = int(settings["max_attempts"])
        self.poll_timeout = float(settings["poll_timeout_seconds"])
        self.linked_recheck = float(settings.get("linked_recheck_seconds", 0))
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="link-sync-worker", daemon=True)
        self._thread.start()
        logger.info("Link sync worker started")

    def stop(self) -> None:
        self._stop_event.set()
        logger.info("Link sync worker stop requested")

    def schedule(self, user_id: int, *, delay_seconds: float = 0.0, priority: str = "normal") -> None:
        self.queue.enqueue(LinkSyncJob(user_id=user_id), priority=priority, delay_seconds=delay_seconds)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.queue.dequeue(timeout=self.poll_timeout)
                if job is None:
                    continue
                if not isinstance(job, LinkSyncJob):
                    logger.warning("Skipping unknown job type", job_type=type(job).__name__)
                    continue
                self.process(job)
            except Exception as e:  # pragma: no cover
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def process(self, job: LinkSyncJob) -> Optional[LinkStatus]:
        """Reconcile one user and decide whether to check again later."""
        session = self.session_factory()
        try:
            status = LinkStatusReconciler(Repository(session), self.gateway).reconcile(job.user_id)
        except Exception as e:
            logger.error(
                "Link sync job failed",
                user_id=job.user_id,
                attempt=job.attempt,
                correlation_id=job.correlation_id,
                error=str(e),
                exc_info=True,
            )
            session.rollback()
            status = None
        finally:
            session.close()

        if status == LinkStatus.LINKED and self.linked_recheck > 0:
            self.schedule(job.user_id, delay_seconds=self.linked_recheck, priority="low")
            logger.info("Linked account re-check scheduled", user_id=job.user_id, delay_seconds=self.linked_recheck)
            return status
        if status in (LinkStatus.LINKED, LinkStatus.REFUSED):
            logger.info("Link sync settled", user_id=job.user_id, link_status=status.value, attempt=job.attempt)
            return status
        if job.attempt >= self.max_attempts:
            logger.warning("Link still pending after max attempts", user_id=job.user_id, attempts=job.attempt)
            return status
        delay = compute_backoff_seconds(job.attempt)
        self.queue.enqueue(job.next_attempt(), priority="low", delay_seconds=delay)
        logger.info("Link sync re-scheduled", user_id=job.user_id, attempt=job.attempt + 1, delay_seconds=round(delay, 1))
        return status


def create_queue(settings: Mapping[str, Any] = QUEUE_SETTINGS) -> Union[PriorityDelayQueue, RedisQueue]:
    """Redis-backed queue when enabled and reachable, in-memory otherwise."""
    if settings.get("use_redis", False):
        redis_queue = RedisQueue(settings)
        if redis_queue.health_check():
            logger.info("Using Redis-backed queue")
            return redis_queue
        logger.warning("Redis not reachable, using in-memory queue")
    logger.info("Using in-memory queue")
    return PriorityDelayQueue(settings)


__all__ = ["LinkSyncWorker", "QueueProtocol", "create_queue"]
