"""ARQ worker configuration."""
from arq import func

from wisp.config import settings
from wisp.database import SessionLocal
from wisp.services.orchestrator import Orchestrator
from wisp.utils.locks import PROJECT_LOCK_TTL
from wisp.utils.logger import logger
from wisp.workers.redis_config import redis_settings
from wisp.workers.tasks import (
    LOCK_RETRY_DEFER,
    delete_user,
    provision_project,
    teardown_project,
    update_project,
)

# Deletions wait out a lock held for its whole TTL, plus a few ordinary retries
DELETION_MAX_TRIES = PROJECT_LOCK_TTL // LOCK_RETRY_DEFER + 5


async def startup(ctx):
    """Worker startup hook: build the capabilities once per process."""
    logger.info("[WORKER] ARQ worker starting up...")
    ctx["orchestrator"] = Orchestrator.from_settings(settings, SessionLocal)
    ctx["startup_complete"] = True


async def shutdown(ctx):
    """Worker shutdown hook."""
    logger.info("[WORKER] ARQ worker shutting down...")


class WorkerSettings:
    """ARQ worker settings."""

    functions = [
        # Pipeline stages are not idempotent, never retry a provisioning job
        func(provision_project, max_tries=1),
        func(update_project, max_tries=1),
        func(teardown_project, max_tries=DELETION_MAX_TRIES),
        func(delete_user, max_tries=DELETION_MAX_TRIES),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = redis_settings

    # Job configuration
    max_jobs = 10  # Max concurrent pipelines
    job_timeout = 1800  # 30 minutes covers every bounded poll and fix attempt
    keep_result = 0  # Job ids are reused per project
    retry_jobs = True
    max_tries = 3
