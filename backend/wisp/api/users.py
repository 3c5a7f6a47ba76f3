"""Users API endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status

from wisp.api.deps import get_store
from wisp.schemas.project import JobAcceptedResponse
from wisp.services.project_store import ProjectStore
from wisp.utils.exceptions import ProjectError, to_http_exception
from wisp.utils.job_queue import queue_user_deletion

router = APIRouter(prefix="/api/users", tags=["users"])


@router.delete("/{user_id}", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def delete_user(
    user_id: str,
    store: ProjectStore = Depends(get_store),
) -> JobAcceptedResponse:
    """
    Queue deletion of a user.

    Every project the user owns is torn down first; the user record is
    removed only when all of them are gone.
    """
    try:
        user = store.get_user(user_id)
    except ProjectError as e:
        raise to_http_exception(e)

    if not await queue_user_deletion(str(user.id)):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Background queue unavailable, try again later",
        )
    return JobAcceptedResponse(success=True, message="User deletion queued", user_id=str(user.id))
