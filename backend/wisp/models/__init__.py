"""Models package."""
from wisp.models.user import User
from wisp.models.project import Project

__all__ = ["User", "Project"]
