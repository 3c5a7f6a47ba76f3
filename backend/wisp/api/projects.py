"""Projects API endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query, status

from wisp.api.deps import get_store
from wisp.constants import ProjectStatus
from wisp.models import Project
from wisp.schemas.project import (
    JobAcceptedResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
)
from wisp.services.orchestrator import register_project
from wisp.services.project_store import ProjectStore
from wisp.utils.exceptions import ProjectError, forbidden_error, to_http_exception, validation_error
from wisp.utils.job_queue import queue_provisioning, queue_teardown, queue_update
from wisp.utils.logger import logger

router = APIRouter(prefix="/api/projects", tags=["projects"])


def verify_project_ownership(project: Project, user_id: str) -> None:
    """Verify that the project belongs to the user."""
    if str(project.user_id) != user_id:
        raise forbidden_error("Access denied: You don't have permission to access this project")


def load_owned_project(store: ProjectStore, project_id: str, user_id: str) -> Project:
    try:
        project = store.get_by_id(project_id)
    except ProjectError as e:
        raise to_http_exception(e)
    verify_project_ownership(project, user_id)
    return project


def queue_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Background queue unavailable, try again later",
    )


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_project(
    request: ProjectCreateRequest,
    store: ProjectStore = Depends(get_store),
) -> ProjectResponse:
    """
    Register a project and queue its provisioning.

    The record is created before this returns; progress is read back
    through GET /api/projects/{project_id}.

    Args:
        request: Project creation data
        store: Project store

    Returns:
        The project in ``creating`` status
    """
    try:
        project = register_project(
            store,
            request.user_id,
            request.name,
            description=request.description,
            private=request.private,
        )
    except ProjectError as e:
        raise to_http_exception(e)

    if not await queue_provisioning(str(project.id), request.questions):
        store.update_status(
            project.id,
            ProjectStatus.FAILED,
            "Could not schedule provisioning",
            error="Background queue unavailable",
        )
        raise queue_unavailable()

    logger.info(f"[PIPELINE] Accepted project {project.name} for user {request.user_id}")
    return ProjectResponse.from_model(project)


@router.get("", response_model=list[ProjectResponse])
async def get_projects(
    user_id: str = Query(..., description="User ID"),
    store: ProjectStore = Depends(get_store),
) -> list[ProjectResponse]:
    """Get all projects for a user."""
    try:
        projects = store.list_by_user(user_id)
    except ProjectError as e:
        raise to_http_exception(e)
    return [ProjectResponse.from_model(p) for p in projects]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    user_id: str = Query(..., description="User ID"),
    store: ProjectStore = Depends(get_store),
) -> ProjectResponse:
    """Get a project's current status."""
    return ProjectResponse.from_model(load_owned_project(store, project_id, user_id))


@router.put("/{project_id}", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def update_project(
    project_id: str,
    request: ProjectUpdateRequest,
    user_id: str = Query(..., description="User ID"),
    store: ProjectStore = Depends(get_store),
) -> JobAcceptedResponse:
    """Queue an AI refinement of a deployed project."""
    project = load_owned_project(store, project_id, user_id)
    if project.status != ProjectStatus.DEPLOYED:
        raise validation_error(f"Only deployed projects can be updated (status: {project.status})")

    if not await queue_update(str(project.id), request.description, request.questions):
        raise queue_unavailable()
    return JobAcceptedResponse(success=True, message="Project update queued", project_id=str(project.id))


@router.delete("/{project_id}", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def delete_project(
    project_id: str,
    user_id: str = Query(..., description="User ID"),
    store: ProjectStore = Depends(get_store),
) -> JobAcceptedResponse:
    """Queue teardown of a project and everything provisioned for it."""
    project = load_owned_project(store, project_id, user_id)
    if not await queue_teardown(str(project.id)):
        raise queue_unavailable()
    return JobAcceptedResponse(success=True, message="Project deletion queued", project_id=str(project.id))
