"""Provisioning pipeline: sequences every stage and persists progress after each one."""
import asyncio
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Dict, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from wisp.config import Settings
from wisp.constants import HealingOutcome, ProjectStatus
from wisp.models import Project
from wisp.schemas.codegen import FileChange
from wisp.services.cloudflare import CloudflareClient
from wisp.services.codegen import CodeGenerator
from wisp.services.deployment import DeploymentMonitor, HealingResult
from wisp.services.github import GitHubClient, RepositoryFile
from wisp.services.hosting import HostingProvisioner
from wisp.services.naming import find_available_name
from wisp.services.project_store import ProjectStore
from wisp.services.screenshot import ScreenshotService
from wisp.services.storage import StorageService
from wisp.services.teardown import Teardown
from wisp.services.vercel import VercelClient
from wisp.services.verification import poll_until_verified
from wisp.utils.exceptions import (
    DeploymentFailedError,
    DomainVerificationTimeoutError,
    FixGenerationExhaustedError,
    FixUnrecoverableError,
    PipelineError,
    ProjectError,
    ValidationError,
)
from wisp.utils.locks import project_lock
from wisp.utils.logger import logger
from wisp.utils.retry import Sleep, retry


@dataclass
class PipelineConfig:
    """Attempt counts and intervals for every bounded stage."""
    stage_max_attempts: int = 3
    stage_initial_delay: float = 2.0
    max_backoff_delay: Optional[float] = None
    template_settle_seconds: float = 3.0
    domain_verify_attempts: int = 10
    domain_verify_interval: float = 2.0
    deployment_poll_attempts: int = 20
    deployment_poll_interval: float = 5.0
    max_fix_attempts: int = 3
    redeploy_wait_seconds: float = 5.0
    branch: str = "main"
    screenshot_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        return cls(
            stage_max_attempts=settings.stage_max_attempts,
            stage_initial_delay=settings.stage_initial_delay,
            max_backoff_delay=settings.max_backoff_delay,
            template_settle_seconds=settings.template_settle_seconds,
            domain_verify_attempts=settings.domain_verify_attempts,
            domain_verify_interval=settings.domain_verify_interval,
            deployment_poll_attempts=settings.deployment_poll_attempts,
            deployment_poll_interval=settings.deployment_poll_interval,
            max_fix_attempts=settings.max_fix_attempts,
            redeploy_wait_seconds=settings.redeploy_wait_seconds,
            branch=settings.default_branch,
            screenshot_enabled=settings.screenshot_enabled,
        )


def build_feature_commit_message(instruction: str, changes: Sequence[FileChange]) -> str:
    descriptions = "\n".join(f"- {change.description}" for change in changes)
    return f"feat: {instruction}\n\n{descriptions}"


def register_project(
    store: ProjectStore,
    user_id,
    name: str,
    description: Optional[str] = None,
    private: bool = False,
) -> Project:
    """
    Resolve a collision-free name and create the project record.

    Runs synchronously before any provisioning so the caller can respond
    with the new project immediately.
    """
    store.get_user(user_id)
    resolved_name = find_available_name(store, name)
    return store.create(
        user_id,
        resolved_name,
        display_name=name.strip(),
        description=description,
        private=private,
    )


class Orchestrator:
    """
    Single entry point for provisioning, refining and tearing down projects.

    Stages run in a fixed order: repository, hosting project, domain binding,
    DNS record, code generation, domain verification, deployment monitoring.
    Every stage writes its progress to the project record; any failure marks
    the project ``failed`` with the error before it is re-raised.
    """

    def __init__(
        self,
        store: ProjectStore,
        github: GitHubClient,
        hosting: HostingProvisioner,
        codegen: CodeGenerator,
        screenshots: Optional[ScreenshotService] = None,
        config: Optional[PipelineConfig] = None,
        sleep: Sleep = asyncio.sleep,
        project_lock: Optional[Callable[[str], AsyncContextManager]] = None,
    ):
        self.store = store
        self.github = github
        self.hosting = hosting
        self.codegen = codegen
        self.screenshots = screenshots
        self.config = config or PipelineConfig()
        self._sleep = sleep
        self.monitor = DeploymentMonitor(
            hosting,
            github,
            codegen,
            max_polls=self.config.deployment_poll_attempts,
            poll_interval=self.config.deployment_poll_interval,
            max_fix_attempts=self.config.max_fix_attempts,
            redeploy_wait=self.config.redeploy_wait_seconds,
            branch=self.config.branch,
            sleep=sleep,
        )
        self.teardowns = Teardown(store, github, hosting, lock=project_lock)

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: sessionmaker) -> "Orchestrator":
        """Build the orchestrator and every capability it needs from configuration."""
        github = GitHubClient(
            settings.github_token,
            owner=settings.github_owner,
            template_owner=settings.template_owner,
            template_repo=settings.template_repo,
        )
        hosting = HostingProvisioner(
            VercelClient(
                settings.vercel_token,
                team_id=settings.vercel_team_id,
                git_owner=settings.github_owner,
                framework=settings.vercel_framework,
            ),
            CloudflareClient(settings.cloudflare_api_token, settings.cloudflare_zone_id),
            domain_suffix=settings.domain_suffix,
            cname_target=settings.cname_target,
        )
        codegen = CodeGenerator(
            settings.codegen_api_key,
            model=settings.codegen_model,
            base_url=settings.codegen_base_url,
            rate_limit_retries=settings.codegen_rate_limit_retries,
        )

        screenshots = None
        if settings.screenshot_enabled and settings.supabase_url and settings.supabase_secret_key:
            storage = StorageService(
                settings.supabase_url, settings.supabase_secret_key, settings.screenshot_bucket
            )
            screenshots = ScreenshotService(storage, settle_seconds=settings.screenshot_settle_seconds)

        return cls(
            ProjectStore(session_factory),
            github,
            hosting,
            codegen,
            screenshots=screenshots,
            config=PipelineConfig.from_settings(settings),
            project_lock=project_lock,
        )

    # Entry points

    async def provision(
        self,
        user_id,
        name: str,
        description: Optional[str] = None,
        private: bool = False,
        questions: Optional[Dict[str, str]] = None,
    ) -> Project:
        """Create the record and run the whole pipeline in one call."""
        project = register_project(self.store, user_id, name, description, private)
        return await self.run_pipeline(project.id, questions=questions)

    async def run_pipeline(self, project_id, questions: Optional[Dict[str, str]] = None) -> Project:
        """
        Provision every external resource for an already-registered project.

        Args:
            project_id: Project created by ``register_project``
            questions: Optional clarifying question/answer pairs for code generation

        Returns:
            The project in ``deployed`` status

        Raises:
            ProjectError: The stage that failed; the project is already marked ``failed``
        """
        project = self.store.get_by_id(project_id)
        logger.info(f"[PIPELINE] Provisioning project {project.name} ({project.id})")
        try:
            return await self._provision_stages(project, questions)
        except ProjectError as e:
            self._mark_failed(project.id, e)
            raise
        except Exception as e:
            error = PipelineError(
                f"Unexpected error while provisioning {project.name}",
                operation="run_pipeline",
                details={"project_id": str(project.id)},
                cause=e,
            )
            self._mark_failed(project.id, error)
            raise error from e

    async def update_project(
        self,
        project_id,
        description: str,
        questions: Optional[Dict[str, str]] = None,
    ) -> Project:
        """
        Refine a deployed project with a new instruction.

        Generated changes land as one ``feat:`` commit; the new deployment then
        goes through the same monitoring and self-healing as a new project.
        """
        project = self.store.get_by_id(project_id)
        if project.status != ProjectStatus.DEPLOYED or not project.hosting_project_id:
            raise ValidationError(
                f"Only deployed projects can be updated (status: {project.status})",
                operation="update_project",
                details={"project_id": str(project.id), "status": project.status},
            )

        logger.info(f"[PIPELINE] Updating project {project.name}: {description}")
        try:
            return await self._update_stages(project, description, questions)
        except ProjectError as e:
            self._mark_failed(project.id, e)
            raise
        except Exception as e:
            error = PipelineError(
                f"Unexpected error while updating {project.name}",
                operation="update_project",
                details={"project_id": str(project.id)},
                cause=e,
            )
            self._mark_failed(project.id, error)
            raise error from e

    async def teardown(self, project_id) -> None:
        await self.teardowns.teardown(project_id)

    async def delete_user(self, user_id) -> None:
        await self.teardowns.teardown_user(user_id)

    # Stages

    async def _provision_stages(self, project: Project, questions: Optional[Dict[str, str]]) -> Project:
        project_id = project.id
        name = project.name

        self._status(project_id, ProjectStatus.CREATING, "Creating repository from template")
        repo_url = await self._retry(
            self._repository_creator(name, project.private),
            self._attempt_reporter(project_id, ProjectStatus.CREATING, "Repository creation"),
        )
        if self.config.template_settle_seconds:
            await self._sleep(self.config.template_settle_seconds)

        self._status(project_id, ProjectStatus.CREATING, "Creating hosting project")
        hosting_project_id = await self._retry(
            self._reusing_creator(
                f"Hosting project {name}",
                lambda: self.hosting.find_hosting_project(name),
                lambda: self.hosting.create_hosting_project(name),
            ),
            self._attempt_reporter(project_id, ProjectStatus.CREATING, "Hosting project creation"),
        )
        self.store.update_details(project_id, hosting_project_id=hosting_project_id)

        self._status(project_id, ProjectStatus.CREATING, "Binding custom domain")
        custom_domain = await self._retry(
            lambda: self.hosting.bind_domain(hosting_project_id, name),
            self._attempt_reporter(project_id, ProjectStatus.CREATING, "Domain binding"),
        )
        self.store.update_details(project_id, custom_domain=custom_domain)

        self._status(project_id, ProjectStatus.CREATING, "Creating DNS record")
        dns_record_id = await self._retry(
            self._reusing_creator(
                f"DNS record for {name}",
                lambda: self.hosting.find_dns_record(name),
                lambda: self.hosting.create_dns_record(name),
            ),
            self._attempt_reporter(project_id, ProjectStatus.CREATING, "DNS record creation"),
        )
        self.store.update_details(project_id, dns_record_id=dns_record_id)

        if project.description:
            self._status(project_id, ProjectStatus.CREATING, "Generating code")
            await self._generate_and_commit(
                project_id, ProjectStatus.CREATING, repo_url, project.description, questions
            )

        self._status(project_id, ProjectStatus.DEPLOYING, "Verifying domain")
        verified = await poll_until_verified(
            self.hosting,
            hosting_project_id,
            name,
            max_attempts=self.config.domain_verify_attempts,
            interval=self.config.domain_verify_interval,
            sleep=self._sleep,
        )
        if not verified:
            raise DomainVerificationTimeoutError(
                f"Domain {custom_domain} was not verified after {self.config.domain_verify_attempts} attempts",
                operation="verify_domain",
                details={"project_id": str(project_id), "domain": custom_domain},
            )

        await self._deploy(project_id, hosting_project_id, repo_url)

        deployed = self._status(project_id, ProjectStatus.DEPLOYED, f"Project deployed at https://{custom_domain}")
        logger.info(f"[PIPELINE] Project {name} deployed at https://{custom_domain}")
        return await self._capture_screenshot(deployed)

    async def _update_stages(
        self,
        project: Project,
        description: str,
        questions: Optional[Dict[str, str]],
    ) -> Project:
        project_id = project.id
        repo_url = self.github.repo_url(project.name)

        self._status(project_id, ProjectStatus.DEPLOYING, "Generating changes")
        committed = await self._generate_and_commit(
            project_id, ProjectStatus.DEPLOYING, repo_url, description, questions
        )
        self.store.update_description(project_id, description)
        if not committed:
            return self._status(project_id, ProjectStatus.DEPLOYED, "No changes were needed")

        await self._deploy(project_id, project.hosting_project_id, repo_url)

        updated = self._status(project_id, ProjectStatus.DEPLOYED, "Project updated")
        logger.info(f"[PIPELINE] Project {project.name} updated")
        return await self._capture_screenshot(updated)

    def _repository_creator(self, name: str, private: bool) -> Callable:
        async def find_repository() -> Optional[str]:
            if await self.github.repository_exists(name):
                return self.github.repo_url(name)
            return None

        return self._reusing_creator(
            f"Repository {name}",
            find_repository,
            lambda: self.github.create_from_template(name, private=private),
        )

    def _reusing_creator(self, resource: str, find: Callable, create: Callable) -> Callable:
        """
        Wrap a non-idempotent create for ``retry``.

        Attempts after the first look the resource up before creating it, so a
        timed-out create that succeeded upstream is reused and its handle recorded.
        """
        attempts = 0

        async def create_or_reuse():
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                existing = await find()
                if existing is not None:
                    logger.info(f"[PIPELINE] {resource} exists after a failed attempt; reusing it")
                    return existing
            return await create()

        return create_or_reuse

    async def _generate_and_commit(
        self,
        project_id,
        status: str,
        repo_url: str,
        instruction: str,
        questions: Optional[Dict[str, str]],
    ) -> bool:
        """Generate changes for an instruction and commit them; False when nothing changed."""
        repo_content = await self._retry(
            lambda: self.github.fetch_content(repo_url, self.config.branch),
            self._attempt_reporter(project_id, status, "Repository fetch"),
        )
        changes = await self._retry(
            lambda: self.codegen.generate_changes(repo_content, instruction, questions),
            self._attempt_reporter(project_id, status, "Code generation"),
        )
        if not changes:
            logger.info(f"[PIPELINE] Code generation proposed no changes for {project_id}")
            return False

        self._status(project_id, status, f"Committing {len(changes)} generated file(s)")
        await self._retry(
            lambda: self.github.commit_files(
                repo_url,
                self.config.branch,
                [RepositoryFile(path=change.path, content=change.content) for change in changes],
                build_feature_commit_message(instruction, changes),
            ),
            self._attempt_reporter(project_id, status, "Commit"),
        )
        return True

    async def _deploy(self, project_id, hosting_project_id: str, repo_url: str) -> HealingResult:
        self._status(project_id, ProjectStatus.DEPLOYING, "Waiting for deployment")

        def on_fix_attempt(attempt: int, error_text: str) -> None:
            self._status(
                project_id,
                ProjectStatus.DEPLOYING,
                f"Deployment failed; fix attempt {attempt}/{self.config.max_fix_attempts} committed",
                error=error_text,
            )

        result = await self.monitor.ensure_deployed(hosting_project_id, repo_url, on_fix_attempt)
        if result.success:
            return result

        details = {
            "project_id": str(project_id),
            "hosting_project_id": hosting_project_id,
            "fix_attempts": result.fix_attempts,
            "state": result.status.state,
        }
        if result.outcome == HealingOutcome.EXHAUSTED:
            raise FixGenerationExhaustedError(
                f"Deployment still failing after {result.fix_attempts} fix attempts",
                operation="ensure_deployed",
                details=details,
            )
        if result.outcome == HealingOutcome.UNRECOVERABLE:
            raise FixUnrecoverableError(
                "Code generation could not produce a fix for the deployment error",
                operation="ensure_deployed",
                details=details,
            )
        raise DeploymentFailedError(
            result.status.error or "Deployment failed",
            logs=result.status.logs,
            operation="wait_for_deployment",
            details=details,
        )

    async def _capture_screenshot(self, project: Project) -> Project:
        """Best-effort mobile screenshot; a failure here never fails the pipeline."""
        if not (self.screenshots and self.config.screenshot_enabled and project.custom_domain):
            return project
        try:
            url = await self.screenshots.capture(
                str(project.id), str(project.user_id), f"https://{project.custom_domain}"
            )
            return self.store.update_screenshot(project.id, url)
        except Exception as e:
            logger.warning(f"[PIPELINE] Screenshot for {project.name} failed (non-fatal): {e}", exc_info=True)
            return project

    # Helpers

    async def _retry(self, operation: Callable, on_attempt_failure: Callable):
        return await retry(
            operation,
            self.config.stage_max_attempts,
            self.config.stage_initial_delay,
            on_attempt_failure,
            max_delay=self.config.max_backoff_delay,
            sleep=self._sleep,
        )

    def _attempt_reporter(self, project_id, status: str, stage: str) -> Callable[[int, BaseException], None]:
        def report(attempt: int, error: BaseException) -> None:
            self._status(
                project_id,
                status,
                f"{stage} attempt {attempt}/{self.config.stage_max_attempts} failed: {error}",
            )

        return report

    def _status(self, project_id, status: str, message: str, error: Optional[str] = None) -> Project:
        return self.store.update_status(project_id, status, message, error=error)

    def _mark_failed(self, project_id, error: ProjectError) -> None:
        logger.error(f"[PIPELINE] Project {project_id} failed: {error}", exc_info=True)
        try:
            self.store.update_status(project_id, ProjectStatus.FAILED, error.message, error=str(error))
        except ProjectError as e:
            logger.error(f"[PIPELINE] Could not mark project {project_id} failed: {e}")
