"""Schemas for project management."""
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from wisp.models import Project


class ProjectCreateRequest(BaseModel):
    """Request schema for POST /api/projects."""
    user_id: str = Field(..., description="Owning user ID")
    name: str = Field(..., min_length=1, max_length=100, description="Requested project name")
    description: Optional[str] = Field(None, max_length=5000, description="What the app should do")
    private: bool = Field(False, description="Repository visibility")
    questions: Optional[Dict[str, str]] = Field(
        None, description="Clarifying questions mapped to the user's answers"
    )


class ProjectUpdateRequest(BaseModel):
    """Request schema for PUT /api/projects/{project_id}."""
    description: str = Field(..., min_length=1, max_length=5000, description="Requested change")
    questions: Optional[Dict[str, str]] = None


class ProjectResponse(BaseModel):
    """Project status as seen by its owner."""
    id: str
    user_id: str
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    private: bool
    status: str
    status_message: Optional[str] = None
    error: Optional[str] = None
    custom_domain: Optional[str] = None
    mobile_screenshot: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    deployed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, obj: Project) -> "ProjectResponse":
        """Convert SQLAlchemy model to response model."""
        return cls(
            id=str(obj.id),
            user_id=str(obj.user_id),
            name=obj.name,
            display_name=obj.display_name,
            description=obj.description,
            private=obj.private,
            status=obj.status,
            status_message=obj.status_message,
            error=obj.error,
            custom_domain=obj.custom_domain,
            mobile_screenshot=obj.mobile_screenshot,
            created_at=obj.created_at,
            last_updated=obj.last_updated,
            deployed_at=obj.deployed_at,
        )


class JobAcceptedResponse(BaseModel):
    """Response for requests handed to the background worker."""
    success: bool
    message: str
    project_id: Optional[str] = None
    user_id: Optional[str] = None
