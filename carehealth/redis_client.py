"""
Shared Redis connection for booking locks and notification queues
Supports both a REDIS_URL (managed Redis) and individual host settings
"""

import logging
from threading import Lock
from typing import Optional

import redis

from .config import (
    REDIS_DB,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    REDIS_SSL,
    REDIS_URL,
    WORKER_POP_TIMEOUT,
)

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
_client_lock = Lock()

# Blocking pops hold the socket for WORKER_POP_TIMEOUT seconds
SOCKET_TIMEOUT = max(30, WORKER_POP_TIMEOUT + 10)


def _mask_url(url: str) -> str:
    if "@" in url:
        url_parts = url.split("@")
        protocol = url_parts[0].split(":")[0]
        return f"{protocol}:****@{url_parts[1]}"
    return "****"


def get_redis_client() -> redis.Redis:
    """Get or create the process-wide Redis client"""
    global redis_client

    with _client_lock:
        if redis_client is not None:
            return redis_client

        logger.info("🔄 Initializing Redis connection...")

        try:
            if REDIS_URL:
                logger.info(f"📡 Using Redis URL connection: {_mask_url(REDIS_URL)}")
                client = redis.from_url(
                    REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=15,
                    socket_timeout=SOCKET_TIMEOUT,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=20,
                )
            else:
                logger.info(
                    f"📡 Using Redis at {REDIS_HOST}:{REDIS_PORT} db={REDIS_DB} "
                    f"({'with SSL' if REDIS_SSL else 'without SSL'})"
                )
                client = redis.Redis(
                    host=REDIS_HOST,
                    port=REDIS_PORT,
                    password=REDIS_PASSWORD,
                    db=REDIS_DB,
                    ssl=REDIS_SSL,
                    decode_responses=True,
                    socket_connect_timeout=15,
                    socket_timeout=SOCKET_TIMEOUT,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=20,
                )
            client.ping()
        except redis.RedisError as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            raise

        logger.info("✅ Redis connected successfully")
        redis_client = client
        return redis_client
