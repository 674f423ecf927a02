"""
redis.py - Redis client for the sync worker.

Two uses:
- Distributed run-lock so only one worker process reconciles at a time
- Operator stream receiving inconsistency reports

Redis is optional. With REDIS_URL unset the worker relies on the in-process
run-lock and the cursor compare-and-swap alone.
"""

import logging
from functools import lru_cache

import redis

from ticket_ledger.config import settings

logger = logging.getLogger(__name__)

INCONSISTENCY_STREAM_NAME = "tickets:inconsistencies"
SYNC_LOCK_NAME = "tickets:sync:lock"


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis | None:
    """
    Get singleton Redis client, or None when REDIS_URL is not configured.

    Raises:
        redis.ConnectionError: If Redis is configured but unreachable.
    """
    if not settings.REDIS_URL:
        return None
    client = redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    # Verify connection on first use
    client.ping()
    logger.info("Redis client connected to %s", settings.REDIS_URL)
    return client


def sync_lock(client: redis.Redis, name: str, timeout: float):
    """
    Non-blocking lock guarding one sync tick.

    `timeout` bounds how long a crashed holder can keep the lock.
    """
    return client.lock(f"{SYNC_LOCK_NAME}:{name}", timeout=timeout, blocking=False)
