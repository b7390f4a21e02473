"""Redis client for idempotency keys and the cross-process custodial lock.

Redis is optional. When it is unreachable at startup the app keeps running
with the in-process custodial lock only, and the idempotency helpers become
no-ops (the datastore's unique constraints still reject duplicates).

Usage:
    from phasion_escrow.infrastructure.redis_client import init_redis, get_redis

    await init_redis()
    redis = get_redis()
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from phasion_escrow.config import get_settings
from phasion_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

CUSTODIAL_LOCK_NAME = "lock:custodial-signer"


async def init_redis() -> aioredis.Redis | None:
    """Initialize the Redis client. Called during app startup.

    Returns None (and logs a warning) if Redis cannot be reached.
    """
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("redis.unavailable", url=settings.redis_url, error=str(exc))
        await client.aclose()
        return None
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


def custodial_lock(timeout: float) -> aioredis.lock.Lock | None:
    """Distributed lock serializing custodial signing across worker processes."""
    if _redis_client is None:
        return None
    return _redis_client.lock(CUSTODIAL_LOCK_NAME, timeout=timeout, blocking_timeout=timeout)


# --- Idempotency Helpers ---


async def claim_idempotency(key: str, value: str = "1") -> bool:
    """Atomically claim an idempotency key.

    Returns True if the key was new (caller proceeds), False if it was
    already claimed. Always True when Redis is not configured.
    """
    if _redis_client is None:
        return True
    settings = get_settings()
    claimed = await _redis_client.set(
        f"idempotency:{key}",
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def release_idempotency(key: str) -> None:
    """Forget a claimed key so a failed operation can be retried."""
    if _redis_client is None:
        return
    await _redis_client.delete(f"idempotency:{key}")
