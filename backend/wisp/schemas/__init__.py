"""Pydantic schemas for request/response validation."""
from wisp.schemas.codegen import FileChange, FileChangeSet
from wisp.schemas.project import (
    JobAcceptedResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
)

__all__ = [
    "FileChange",
    "FileChangeSet",
    "JobAcceptedResponse",
    "ProjectCreateRequest",
    "ProjectResponse",
    "ProjectUpdateRequest",
]
