"""Shared API dependencies."""
from wisp.database import SessionLocal
from wisp.services.project_store import ProjectStore

_store = ProjectStore(SessionLocal)


def get_store() -> ProjectStore:
    """Dependency for getting the project store."""
    return _store
