"""
Redis distributed locks — serializes webhook deliveries for the same contact.
Uses Redis SET NX with TTL for automatic expiration.
"""
import asyncio
import hashlib
import logging
import uuid
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 5
LOCK_POLL_INTERVAL = 0.1  # 100ms


def make_contact_lock_key(company_id: str, contact_key: str) -> str:
    """Lock key for one contact within one company (hashed for constant length)."""
    raw = f"{company_id}:{contact_key}"
    hash_val = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return f"jobflow:lock:contact:{hash_val}"


@asynccontextmanager
async def contact_lock(
    company_id: str,
    contact_key: str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Acquire a distributed lock for an inbound contact.
    Prevents two deliveries of a brand-new contact from both creating a lead.

    Usage:
        async with contact_lock(company_id, "ext-123"):
            # match + merge + write
    """
    lock_key = make_contact_lock_key(company_id, contact_key)
    lock_value = uuid.uuid4().hex  # Unique value to ensure we only release our own lock

    acquired = False
    try:
        acquired = await _acquire_lock(lock_key, lock_value, ttl, wait)
        if not acquired:
            raise LockTimeoutError(f"Could not acquire contact lock {lock_key} within {wait}s")
        yield
    finally:
        if acquired:
            await _release_lock(lock_key, lock_value)


async def _acquire_lock(
    key: str,
    value: str,
    ttl: int,
    wait: float,
) -> bool:
    """Try to acquire a Redis lock with polling."""
    try:
        from jobflow.utils.redis_client import get_redis
        redis = await get_redis()

        was_set = await redis.set(key, value, nx=True, ex=ttl)
        if was_set:
            return True

        elapsed = 0.0
        while elapsed < wait:
            await asyncio.sleep(LOCK_POLL_INTERVAL)
            elapsed += LOCK_POLL_INTERVAL
            was_set = await redis.set(key, value, nx=True, ex=ttl)
            if was_set:
                return True

        logger.warning("Lock acquisition timed out for %s", key)
        return False
    except Exception as e:
        # Row locks and the unique constraint still protect the write
        logger.warning("Redis lock error for %s: %s. Proceeding without lock.", key, str(e))
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it (compare-and-delete)."""
    try:
        from jobflow.utils.redis_client import get_redis
        redis = await get_redis()

        lua_script = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        await redis.eval(lua_script, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout."""
    pass
