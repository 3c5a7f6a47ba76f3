"""Schemas for code-generation output."""
from typing import List

from pydantic import BaseModel, Field

from wisp.constants import MAX_FILE_CHANGES


class FileChange(BaseModel):
    """One full-content file replacement proposed by the code generator."""
    path: str = Field(
        ...,
        min_length=1,
        pattern=r"^[a-zA-Z0-9\-_/.]+$",
        description="Path relative to the repository root",
    )
    content: str = Field(..., min_length=1, description="Complete file content after the change")
    description: str = Field(
        ...,
        min_length=10,
        max_length=200,
        description="What changed in this file and why",
    )


class FileChangeSet(BaseModel):
    """Bounded list of file changes. An empty list means no change was proposed."""
    changes: List[FileChange] = Field(default_factory=list, max_length=MAX_FILE_CHANGES)
