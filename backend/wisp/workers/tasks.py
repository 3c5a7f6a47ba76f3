"""ARQ background tasks for provisioning, refining and tearing down projects."""
from typing import Any, Dict, Optional

from arq import Retry

from wisp.services.orchestrator import Orchestrator
from wisp.utils.exceptions import ProjectBusyError, ProjectError
from wisp.utils.locks import acquire_project_lock, release_project_lock
from wisp.utils.logger import logger

# Seconds a deletion waits for the job holding the project lock
LOCK_RETRY_DEFER = 60


def _already_running(project_id: str) -> Dict[str, Any]:
    logger.warning(f"[WORKER] Project {project_id} is already being processed; skipping")
    return {"success": False, "error": f"Project {project_id} is already being processed"}


def _failure(error: ProjectError) -> Dict[str, Any]:
    return {"success": False, "error": str(error), "code": error.code}


async def provision_project(
    ctx: Dict[str, Any],
    project_id: str,
    questions: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Run the provisioning pipeline for a registered project.

    Args:
        ctx: ARQ context
        project_id: The project UUID (string)
        questions: Optional clarifying question/answer pairs

    Returns:
        Dict with success status and details
    """
    token = await acquire_project_lock(project_id)
    if token is None:
        return _already_running(project_id)

    orchestrator: Orchestrator = ctx["orchestrator"]
    try:
        project = await orchestrator.run_pipeline(project_id, questions=questions)
        return {
            "success": True,
            "project_id": project_id,
            "custom_domain": project.custom_domain,
        }
    except ProjectError as e:
        # The pipeline has already written the failed status
        logger.error(f"[WORKER] Provisioning {project_id} failed: {e}")
        return _failure(e)
    finally:
        await release_project_lock(project_id, token)


async def update_project(
    ctx: Dict[str, Any],
    project_id: str,
    description: str,
    questions: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Apply an AI refinement to a deployed project."""
    token = await acquire_project_lock(project_id)
    if token is None:
        return _already_running(project_id)

    orchestrator: Orchestrator = ctx["orchestrator"]
    try:
        await orchestrator.update_project(project_id, description, questions=questions)
        return {"success": True, "project_id": project_id}
    except ProjectError as e:
        logger.error(f"[WORKER] Updating {project_id} failed: {e}")
        return _failure(e)
    finally:
        await release_project_lock(project_id, token)


async def teardown_project(ctx: Dict[str, Any], project_id: str) -> Dict[str, Any]:
    """
    Delete a project's external resources and record.

    A deletion is never dropped: while another job holds the project, the
    teardown is deferred until that job releases it.
    """
    token = await acquire_project_lock(project_id)
    if token is None:
        logger.info(f"[WORKER] Project {project_id} is busy; retrying teardown in {LOCK_RETRY_DEFER}s")
        raise Retry(defer=LOCK_RETRY_DEFER)

    orchestrator: Orchestrator = ctx["orchestrator"]
    try:
        await orchestrator.teardown(project_id)
        return {"success": True, "project_id": project_id}
    except ProjectError as e:
        logger.error(f"[WORKER] Teardown of {project_id} failed: {e}")
        return _failure(e)
    finally:
        await release_project_lock(project_id, token)


async def delete_user(ctx: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """Tear down every project of a user, then delete the user."""
    orchestrator: Orchestrator = ctx["orchestrator"]
    try:
        await orchestrator.delete_user(user_id)
        return {"success": True, "user_id": user_id}
    except ProjectBusyError:
        logger.info(f"[WORKER] User {user_id} has busy projects; retrying in {LOCK_RETRY_DEFER}s")
        raise Retry(defer=LOCK_RETRY_DEFER)
    except ProjectError as e:
        logger.error(f"[WORKER] Deleting user {user_id} failed: {e}")
        return _failure(e)
