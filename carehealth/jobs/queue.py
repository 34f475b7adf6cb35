"""
Durable FIFO job queue, one list per queue name.

Producers append to the tail, consumers pop from the head. Removal by
predicate is a best-effort scan used by appointment cancellation; the
worker's delivery-time re-check is what actually prevents stale sends.
"""

import logging
from collections import deque
from threading import Condition
from typing import Callable, Optional, Protocol

import redis
from pydantic import ValidationError as PayloadError

from ..config import APPOINTMENT_QUEUE_KEY, LAB_RESULT_QUEUE_KEY, PHARMACY_QUEUE_KEY
from .schemas import (
    JOB_TYPE_LAB_RESULT,
    JOB_TYPE_PRESCRIPTION_STATUS,
    JOB_TYPE_REMINDER,
    NotificationJob,
)

logger = logging.getLogger(__name__)

QUEUE_BY_JOB_TYPE = {
    JOB_TYPE_REMINDER: APPOINTMENT_QUEUE_KEY,
    JOB_TYPE_LAB_RESULT: LAB_RESULT_QUEUE_KEY,
    JOB_TYPE_PRESCRIPTION_STATUS: PHARMACY_QUEUE_KEY,
}


def queue_for(job_type: str) -> str:
    return QUEUE_BY_JOB_TYPE[job_type]


class QueueBackend(Protocol):
    def push(self, queue_name: str, payload: str) -> None: ...

    def pop_blocking(self, queue_name: str, timeout: float) -> Optional[str]: ...

    def scan(self, queue_name: str) -> list[str]: ...

    def remove(self, queue_name: str, payload: str, count: int = 1) -> int: ...

    def length(self, queue_name: str) -> int: ...


class RedisQueueBackend:
    """Redis lists: RPUSH to the tail, BLPOP from the head"""

    def __init__(self, client: redis.Redis):
        self.client = client

    def push(self, queue_name: str, payload: str) -> None:
        self.client.rpush(queue_name, payload)

    def pop_blocking(self, queue_name: str, timeout: float) -> Optional[str]:
        # BLPOP treats 0 as "block forever"
        result = self.client.blpop([queue_name], timeout=max(int(timeout), 1))
        if not result:
            return None
        _key, payload = result
        return payload

    def scan(self, queue_name: str) -> list[str]:
        return list(self.client.lrange(queue_name, 0, -1))

    def remove(self, queue_name: str, payload: str, count: int = 1) -> int:
        return int(self.client.lrem(queue_name, count, payload))

    def length(self, queue_name: str) -> int:
        return int(self.client.llen(queue_name))


class InMemoryQueueBackend:
    """Thread-safe in-process lists with blocking pop"""

    def __init__(self):
        self._queues: dict[str, deque] = {}
        self._cond = Condition()

    def push(self, queue_name: str, payload: str) -> None:
        with self._cond:
            self._queues.setdefault(queue_name, deque()).append(payload)
            self._cond.notify_all()

    def pop_blocking(self, queue_name: str, timeout: float) -> Optional[str]:
        with self._cond:
            ready = self._cond.wait_for(lambda: bool(self._queues.get(queue_name)), timeout=timeout)
            if not ready:
                return None
            return self._queues[queue_name].popleft()

    def scan(self, queue_name: str) -> list[str]:
        with self._cond:
            return list(self._queues.get(queue_name, ()))

    def remove(self, queue_name: str, payload: str, count: int = 1) -> int:
        with self._cond:
            items = self._queues.get(queue_name)
            removed = 0
            while items and removed < count and payload in items:
                items.remove(payload)
                removed += 1
            return removed

    def length(self, queue_name: str) -> int:
        with self._cond:
            return len(self._queues.get(queue_name, ()))


class JobQueue:
    """Notification job queue over a pluggable list backend"""

    def __init__(self, backend: QueueBackend):
        self.backend = backend

    def enqueue(self, queue_name: str, job: NotificationJob) -> None:
        self.backend.push(queue_name, job.encode())
        logger.debug(f"📥 Enqueued {job.type} job for {job.subject_id} on {queue_name}")

    def dequeue_blocking(self, queue_name: str, timeout: float) -> Optional[str]:
        """Pop the raw payload at the head, or None after ``timeout`` seconds"""
        return self.backend.pop_blocking(queue_name, timeout)

    def remove_matching(
        self, queue_name: str, predicate: Callable[[NotificationJob], bool]
    ) -> bool:
        """Remove at most one job matching ``predicate``; True if one was removed"""
        for payload in self.backend.scan(queue_name):
            try:
                job = NotificationJob.decode(payload)
            except PayloadError:
                continue
            if predicate(job) and self.backend.remove(queue_name, payload, 1) > 0:
                logger.info(f"🗑️ Removed queued {job.type} job for {job.subject_id}")
                return True
        return False

    def length(self, queue_name: str) -> int:
        return self.backend.length(queue_name)
