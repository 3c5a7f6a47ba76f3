"""Background job queue utilities."""
from typing import Any, Dict, Optional

from arq import create_pool
from redis.exceptions import RedisError

from wisp.utils.logger import logger
from wisp.workers.redis_config import redis_settings


def job_id(kind: str, resource_id: str) -> str:
    """Deterministic job id, so one resource never has two identical jobs queued."""
    return f"{kind}:{resource_id}"


async def _enqueue(function: str, _job_id: str, *args: Any) -> bool:
    try:
        redis = await create_pool(redis_settings)
    except (RedisError, OSError) as e:
        logger.error(f"[WORKER] Failed to connect to queue for {_job_id}: {e}", exc_info=True)
        return False

    try:
        job = await redis.enqueue_job(function, *args, _job_id=_job_id)
    except RedisError as e:
        logger.error(f"[WORKER] Failed to queue {function} ({_job_id}): {e}", exc_info=True)
        return False
    finally:
        await redis.aclose()

    if job is None:
        logger.info(f"[WORKER] {function} already queued as {_job_id}")
    else:
        logger.info(f"[WORKER] Queued {function} as {_job_id}")
    return True


async def queue_provisioning(project_id: str, questions: Optional[Dict[str, str]] = None) -> bool:
    """
    Queue the provisioning pipeline for a newly registered project.

    Args:
        project_id: The project UUID (string)
        questions: Optional clarifying question/answer pairs

    Returns:
        True if the job is queued (now or already), False otherwise
    """
    return await _enqueue("provision_project", job_id("provision", project_id), project_id, questions)


async def queue_update(project_id: str, description: str, questions: Optional[Dict[str, str]] = None) -> bool:
    """Queue an AI refinement of a deployed project."""
    return await _enqueue(
        "update_project", job_id("update", project_id), project_id, description, questions
    )


async def queue_teardown(project_id: str) -> bool:
    """Queue teardown of a project."""
    return await _enqueue("teardown_project", job_id("teardown", project_id), project_id)


async def queue_user_deletion(user_id: str) -> bool:
    """Queue teardown of every project a user owns, followed by the user."""
    return await _enqueue("delete_user", job_id("delete-user", user_id), user_id)
