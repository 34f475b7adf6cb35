"""
Named, time-bounded mutual-exclusion locks with ownership tokens.

Acquire is a set-if-absent-with-expiry write of a fresh random token,
retried on a fixed interval until the acquire deadline. Release is an
atomic compare-and-delete, so a holder whose TTL expired can never release
a lock that someone else has since acquired.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from threading import Lock
from typing import Callable, Iterator, Optional, Protocol

import redis

from .config import (
    APPOINTMENT_LOCK_RETRY_MS,
    APPOINTMENT_LOCK_TIMEOUT_MS,
    APPOINTMENT_LOCK_TTL_MS,
)
from .errors import LockUnavailableError

logger = logging.getLogger(__name__)

# KEYS[1] = lock key, ARGV[1] = owner token
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockBackend(Protocol):
    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool: ...

    def compare_and_delete(self, key: str, token: str) -> bool: ...


class RedisLockBackend:
    """SET NX PX for acquisition, Lua compare-and-delete for release"""

    def __init__(self, client: redis.Redis):
        self.client = client
        self._release_script = client.register_script(COMPARE_AND_DELETE_SCRIPT)

    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        return bool(self.client.set(key, token, nx=True, px=ttl_ms))

    def compare_and_delete(self, key: str, token: str) -> bool:
        return int(self._release_script(keys=[key], args=[token])) == 1


class InMemoryLockBackend:
    """Process-local backend with the same semantics; for tests and single-process development"""

    def __init__(self, monotonic: Callable[[], float] = time.monotonic):
        self._monotonic = monotonic
        self._entries: dict[str, tuple[str, float]] = {}
        self._guard = Lock()

    def _live_token(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        token, expires_at = entry
        if expires_at <= self._monotonic():
            del self._entries[key]
            return None
        return token

    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        with self._guard:
            if self._live_token(key) is not None:
                return False
            self._entries[key] = (token, self._monotonic() + ttl_ms / 1000)
            return True

    def compare_and_delete(self, key: str, token: str) -> bool:
        with self._guard:
            if self._live_token(key) != token:
                return False
            del self._entries[key]
            return True

    def holder(self, key: str) -> Optional[str]:
        with self._guard:
            return self._live_token(key)


class LockService:
    """Acquire/release named locks against a pluggable backend"""

    def __init__(
        self,
        backend: LockBackend,
        ttl_ms: int = APPOINTMENT_LOCK_TTL_MS,
        acquire_timeout_ms: int = APPOINTMENT_LOCK_TIMEOUT_MS,
        retry_delay_ms: int = APPOINTMENT_LOCK_RETRY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.ttl_ms = ttl_ms
        self.acquire_timeout_ms = acquire_timeout_ms
        self.retry_delay_ms = retry_delay_ms
        self._sleep = sleep

    def acquire(
        self,
        key: str,
        ttl_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> str:
        """
        Acquire ``key`` and return the ownership token.

        Raises:
            LockUnavailableError: the key stayed held past the acquire deadline,
                or the backend could not be reached
        """
        ttl = ttl_ms if ttl_ms is not None else self.ttl_ms
        timeout = acquire_timeout_ms if acquire_timeout_ms is not None else self.acquire_timeout_ms
        deadline = time.monotonic() + timeout / 1000

        while True:
            token = uuid.uuid4().hex
            try:
                acquired = self.backend.set_if_absent(key, token, ttl)
            except redis.RedisError as e:
                logger.error(f"❌ Lock backend error while acquiring {key}: {e}")
                raise LockUnavailableError(
                    "Unable to secure appointment lock. Please try again."
                ) from e
            if acquired:
                logger.debug(f"🔒 Lock acquired: {key}")
                return token
            if time.monotonic() >= deadline:
                break
            self._sleep(self.retry_delay_ms / 1000)

        logger.warning(f"⏰ Lock unavailable after {timeout}ms: {key}")
        raise LockUnavailableError("Unable to secure appointment lock. Please try again.")

    def release(self, key: str, token: str) -> bool:
        """Release ``key`` if still owned by ``token``; a lost lock is a no-op"""
        try:
            released = self.backend.compare_and_delete(key, token)
        except redis.RedisError as e:
            logger.error(f"❌ Lock release failed for {key}: {e}")
            return False

        if released:
            logger.debug(f"🔓 Lock released: {key}")
        else:
            logger.warning(f"⚠️ Lock {key} expired or changed owner before release")
        return released

    @contextmanager
    def hold(
        self,
        key: str,
        ttl_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> Iterator[str]:
        token = self.acquire(key, ttl_ms=ttl_ms, acquire_timeout_ms=acquire_timeout_ms)
        try:
            yield token
        finally:
            self.release(key, token)


def doctor_lock_key(doctor_id: str) -> str:
    return f"locks:appointments:doctor:{doctor_id}"
