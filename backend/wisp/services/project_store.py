"""Persisted project records and status transitions."""
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wisp.constants import ALLOWED_TRANSITIONS, ProjectStatus
from wisp.models import Project, User
from wisp.utils.exceptions import (
    AlreadyExistsError,
    InvalidTransitionError,
    NotFoundError,
    ProjectError,
    ValidationError,
)
from wisp.utils.logger import logger


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _as_uuid(value, operation: str, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(
            f"Invalid {field} format: {value}",
            operation=operation,
            details={field: str(value)},
            cause=e,
        )


class ProjectStore:
    """
    Single source of truth for project progress.

    Every operation runs in its own session and returns detached instances.
    Failures are wrapped into the typed error taxonomy with the operation
    name and the identifiers involved.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str, **details) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except ProjectError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            raise AlreadyExistsError(
                f"Unique constraint violated during {operation}",
                operation=operation,
                details=details,
                cause=e,
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[STORE] Database error during {operation}: {e}", exc_info=True)
            raise ProjectError(
                f"Database error during {operation}",
                operation=operation,
                details=details,
                cause=e,
                code="DATABASE_ERROR",
            )
        finally:
            db.close()

    def _load(self, db: Session, project_id, operation: str) -> Project:
        project_uuid = _as_uuid(project_id, operation)
        project = db.query(Project).filter(Project.id == project_uuid).first()
        if not project:
            raise NotFoundError(
                f'Project with ID "{project_id}" not found',
                operation=operation,
                details={"project_id": str(project_id)},
            )
        return project

    def create(
        self,
        user_id,
        name: str,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        private: bool = False,
    ) -> Project:
        """Insert a new project in ``creating`` status; fails with AlreadyExists on a taken name."""
        operation = "create_project"
        with self._session(operation, name=name, user_id=str(user_id)) as db:
            existing = db.query(Project.id).filter(Project.name == name).first()
            if existing:
                raise AlreadyExistsError(
                    f'Project with name "{name}" already exists',
                    operation=operation,
                    details={"name": name, "user_id": str(user_id)},
                )

            now = utc_now()
            project = Project(
                id=uuid.uuid4(),
                user_id=_as_uuid(user_id, operation, "user_id"),
                name=name,
                display_name=display_name,
                description=description,
                private=private,
                status=ProjectStatus.CREATING,
                status_message="Project creation started",
                created_at=now,
                last_updated=now,
            )
            db.add(project)
            db.commit()
            db.refresh(project)
            logger.info(f"[STORE] Created project {project.id} ({name})")
            return project

    def get_by_id(self, project_id) -> Project:
        with self._session("get_project", project_id=str(project_id)) as db:
            return self._load(db, project_id, "get_project")

    def get_by_name(self, name: str) -> Project:
        operation = "get_project_by_name"
        with self._session(operation, name=name) as db:
            project = db.query(Project).filter(Project.name == name).first()
            if not project:
                raise NotFoundError(
                    f'Project with name "{name}" not found',
                    operation=operation,
                    details={"name": name},
                )
            return project

    def names_with_prefix(self, prefix: str) -> List[str]:
        """Names of all stored projects starting with ``prefix``."""
        with self._session("find_project_names", prefix=prefix) as db:
            rows = db.query(Project.name).filter(Project.name.startswith(prefix, autoescape=True)).all()
            return [row.name for row in rows]

    def update_status(
        self,
        project_id,
        status: str,
        message: str,
        error: Optional[str] = None,
        deployed_at: Optional[datetime] = None,
    ) -> Project:
        """
        Write a status transition.

        ``status_message`` and ``error`` are overwritten on every write.
        ``deployed_at`` is set on the first transition into ``deployed`` and
        only replaced afterwards when an explicit value is supplied.
        """
        operation = "update_project_status"
        with self._session(operation, project_id=str(project_id), requested_status=status) as db:
            project = self._load(db, project_id, operation)

            if status not in ALLOWED_TRANSITIONS.get(project.status, set()):
                raise InvalidTransitionError(
                    f"Cannot move project from {project.status} to {status}",
                    operation=operation,
                    details={
                        "project_id": str(project_id),
                        "current_status": project.status,
                        "requested_status": status,
                    },
                )

            project.status = status
            project.status_message = message
            project.error = error
            project.last_updated = utc_now()
            if deployed_at is not None:
                project.deployed_at = deployed_at
            elif status == ProjectStatus.DEPLOYED and project.deployed_at is None:
                project.deployed_at = project.last_updated

            db.commit()
            db.refresh(project)
            logger.info(f"[STORE] Project {project_id} -> {status}: {message}")
            return project

    def update_details(
        self,
        project_id,
        hosting_project_id: Optional[str] = None,
        dns_record_id: Optional[str] = None,
        custom_domain: Optional[str] = None,
    ) -> Project:
        """Record provisioned resource handles; a handle, once written, is never unset."""
        operation = "update_project_details"
        with self._session(operation, project_id=str(project_id)) as db:
            project = self._load(db, project_id, operation)
            if hosting_project_id is not None:
                project.hosting_project_id = hosting_project_id
            if dns_record_id is not None:
                project.dns_record_id = dns_record_id
            if custom_domain is not None:
                project.custom_domain = custom_domain
            project.last_updated = utc_now()
            db.commit()
            db.refresh(project)
            return project

    def update_description(self, project_id, description: str) -> Project:
        operation = "update_project_description"
        with self._session(operation, project_id=str(project_id)) as db:
            project = self._load(db, project_id, operation)
            project.description = description
            project.last_updated = utc_now()
            db.commit()
            db.refresh(project)
            return project

    def update_screenshot(self, project_id, url: str) -> Project:
        operation = "update_mobile_screenshot"
        with self._session(operation, project_id=str(project_id)) as db:
            project = self._load(db, project_id, operation)
            project.mobile_screenshot = url
            db.commit()
            db.refresh(project)
            return project

    def delete(self, project_id) -> None:
        operation = "delete_project"
        with self._session(operation, project_id=str(project_id)) as db:
            project = self._load(db, project_id, operation)
            db.delete(project)
            db.commit()
            logger.info(f"[STORE] Deleted project record {project_id}")

    def list_by_user(self, user_id) -> List[Project]:
        operation = "list_user_projects"
        with self._session(operation, user_id=str(user_id)) as db:
            user_uuid = _as_uuid(user_id, operation, "user_id")
            self._load_user(db, user_uuid, operation)
            return (
                db.query(Project)
                .filter(Project.user_id == user_uuid)
                .order_by(Project.created_at.asc())
                .all()
            )

    def _load_user(self, db: Session, user_id, operation: str) -> User:
        user = db.query(User).filter(User.id == _as_uuid(user_id, operation, "user_id")).first()
        if not user:
            raise NotFoundError(
                f'User with ID "{user_id}" not found',
                operation=operation,
                details={"user_id": str(user_id)},
            )
        return user

    def get_user(self, user_id) -> User:
        with self._session("get_user", user_id=str(user_id)) as db:
            return self._load_user(db, user_id, "get_user")

    def delete_user(self, user_id) -> None:
        operation = "delete_user"
        with self._session(operation, user_id=str(user_id)) as db:
            user = self._load_user(db, user_id, operation)
            remaining = db.query(Project.id).filter(Project.user_id == user.id).count()
            if remaining:
                raise ValidationError(
                    f"User {user_id} still owns {remaining} project(s)",
                    operation=operation,
                    details={"user_id": str(user_id), "remaining_projects": remaining},
                )
            db.delete(user)
            db.commit()
            logger.info(f"[STORE] Deleted user {user_id}")
