from .queue import (
    InMemoryQueueBackend,
    JobQueue,
    RedisQueueBackend,
    queue_for,
)
from .schemas import (
    JOB_TYPE_LAB_RESULT,
    JOB_TYPE_PRESCRIPTION_STATUS,
    JOB_TYPE_REMINDER,
    NotificationJob,
)

__all__ = [
    "InMemoryQueueBackend",
    "JobQueue",
    "RedisQueueBackend",
    "queue_for",
    "JOB_TYPE_LAB_RESULT",
    "JOB_TYPE_PRESCRIPTION_STATUS",
    "JOB_TYPE_REMINDER",
    "NotificationJob",
]
