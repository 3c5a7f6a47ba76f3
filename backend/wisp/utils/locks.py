"""Per-project processing locks stored in Redis."""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from wisp.config import settings
from wisp.utils.exceptions import ProjectBusyError
from wisp.utils.logger import logger

# Longest a pipeline may hold a project (matches the worker job timeout)
PROJECT_LOCK_TTL = 1800

# Delete the key only while it still holds the caller's token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@asynccontextmanager
async def get_redis_client():
    """Get async Redis client with proper cleanup."""
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()


def _project_lock_key(project_id: str) -> str:
    """Generate Redis key for a project's processing lock."""
    return f"project_processing:{project_id}"


async def acquire_project_lock(project_id: str, ttl_seconds: int = PROJECT_LOCK_TTL) -> Optional[str]:
    """
    Acquire the lock that keeps a single job active per project.

    Args:
        project_id: The project UUID (string)
        ttl_seconds: Lock TTL in seconds

    Returns:
        The lock token, or None if already locked or Redis is unreachable
    """
    token = uuid.uuid4().hex
    try:
        async with get_redis_client() as client:
            # SET NX EX: only if not exists, with expiration
            acquired = await client.set(_project_lock_key(project_id), token, ex=ttl_seconds, nx=True)
    except redis.RedisError as e:
        logger.error(f"[WORKER] Failed to acquire lock for project {project_id}: {e}", exc_info=True)
        return None
    return token if acquired else None


async def release_project_lock(project_id: str, token: str) -> bool:
    """
    Release a project's processing lock if ``token`` still owns it.

    A lock that expired and was taken by another job is left alone.

    Returns:
        True if the lock was released, False otherwise
    """
    try:
        async with get_redis_client() as client:
            released = await client.eval(RELEASE_SCRIPT, 1, _project_lock_key(project_id), token)
    except redis.RedisError as e:
        logger.error(f"[WORKER] Failed to release lock for project {project_id}: {e}", exc_info=True)
        return False

    if not released:
        logger.warning(f"[WORKER] Lock for project {project_id} expired before release")
    return bool(released)


@asynccontextmanager
async def project_lock(project_id: str) -> AsyncIterator[str]:
    """
    Hold a project's processing lock for the duration of the block.

    Raises:
        ProjectBusyError: Another job holds the lock
    """
    token = await acquire_project_lock(project_id)
    if token is None:
        raise ProjectBusyError(
            f"Project {project_id} is already being processed",
            operation="acquire_project_lock",
            details={"project_id": project_id},
        )
    try:
        yield token
    finally:
        await release_project_lock(project_id, token)
