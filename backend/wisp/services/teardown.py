"""Compensating deletion of everything provisioned for a project."""
import asyncio
from contextlib import nullcontext
from typing import AsyncContextManager, Callable, Dict, List, Optional

from wisp.constants import ProjectStatus
from wisp.models import Project
from wisp.services.github import GitHubClient
from wisp.services.hosting import HostingProvisioner
from wisp.services.project_store import ProjectStore
from wisp.utils.exceptions import NotFoundError, ProjectBusyError, TeardownError
from wisp.utils.logger import logger


class Teardown:
    """Deletes a project's repository, DNS record, hosting project and record."""

    def __init__(
        self,
        store: ProjectStore,
        github: GitHubClient,
        hosting: HostingProvisioner,
        lock: Optional[Callable[[str], AsyncContextManager]] = None,
    ):
        self.store = store
        self.github = github
        self.hosting = hosting
        self.lock = lock

    async def teardown(self, project_id) -> None:
        """
        Tear down one project.

        The external deletes run concurrently and every one is attempted even
        when another fails. The record is removed only when all of them
        succeeded, so a failed teardown can be retried from the record. A
        project whose record is already gone counts as torn down.

        Raises:
            TeardownError: One or more external deletes failed
        """
        try:
            project = self.store.get_by_id(project_id)
        except NotFoundError:
            logger.info(f"[TEARDOWN] Project {project_id} already removed")
            return

        resources = self._resource_deletes(project)
        logger.info(f"[TEARDOWN] Deleting {', '.join(resources)} for project {project.name}")
        outcomes = await asyncio.gather(*resources.values(), return_exceptions=True)

        failures: Dict[str, BaseException] = {}
        for resource, outcome in zip(resources, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[TEARDOWN] Failed to delete {resource} for {project.name}: {outcome}")
                failures[resource] = outcome

        if failures:
            raise TeardownError(
                f"Failed to delete {len(failures)} resource(s) for project {project.name}",
                failures=failures,
                operation="teardown_project",
                details={"project_id": str(project.id), "name": project.name},
            )

        if project.status != ProjectStatus.DELETED:
            self.store.update_status(project.id, ProjectStatus.DELETED, "Project resources deleted")
        self.store.delete(project.id)
        logger.info(f"[TEARDOWN] Project {project.name} torn down")

    def _resource_deletes(self, project: Project) -> Dict[str, object]:
        deletes = {"repository": self.github.delete_repository(self.github.owner, project.name)}
        if project.dns_record_id:
            deletes["dns_record"] = self.hosting.delete_dns_record(project.dns_record_id)
        if project.hosting_project_id:
            deletes["hosting_project"] = self.hosting.delete_hosting_project(project.hosting_project_id)
        return deletes

    async def teardown_user(self, user_id) -> None:
        """
        Tear down every project a user owns, then delete the user.

        Each project is torn down under its processing lock, so a pipeline
        still running for it cannot create resources after its record was
        read. The user record stays when any project teardown fails or any
        project is busy.

        Raises:
            TeardownError: One or more project teardowns failed
            ProjectBusyError: A project is held by another job; retry later
        """
        projects = self.store.list_by_user(user_id)
        failures: Dict[str, BaseException] = {}
        busy: List[str] = []
        for project in projects:
            try:
                async with self._locked(project.id):
                    await self.teardown(project.id)
            except TeardownError as e:
                failures[project.name] = e
            except ProjectBusyError:
                logger.info(f"[TEARDOWN] Project {project.name} is busy; deferring")
                busy.append(project.name)

        if failures:
            raise TeardownError(
                f"Failed to tear down {len(failures)} of {len(projects)} project(s) for user {user_id}",
                failures=failures,
                operation="delete_user",
                details={"user_id": str(user_id)},
            )
        if busy:
            raise ProjectBusyError(
                f"{len(busy)} project(s) of user {user_id} are still being processed",
                operation="delete_user",
                details={"user_id": str(user_id), "projects": busy},
            )

        self.store.delete_user(user_id)
        logger.info(f"[TEARDOWN] User {user_id} and {len(projects)} project(s) deleted")

    def _locked(self, project_id) -> AsyncContextManager:
        if self.lock is None:
            return nullcontext()
        return self.lock(str(project_id))
