"""Deployment health monitoring and the self-healing fix loop."""
import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from wisp.constants import (
    COMMIT_ERROR_EXCERPT_CHARS,
    MAX_FIX_ATTEMPTS,
    DeploymentState,
    HealingOutcome,
)
from wisp.schemas.codegen import FileChange
from wisp.services.codegen import CodeGenerator
from wisp.services.github import GitHubClient, RepositoryFile
from wisp.services.hosting import HostingProvisioner
from wisp.utils.logger import logger
from wisp.utils.retry import Sleep

FixAttemptCallback = Callable[[int, str], None]


@dataclass
class DeploymentStatus:
    """Outcome of waiting on the latest deployment."""
    success: bool
    state: str
    error: Optional[str] = None
    logs: Optional[str] = None
    remediable: bool = False


@dataclass
class HealingResult:
    """Terminal outcome of the self-healing loop."""
    outcome: str
    fix_attempts: int
    status: DeploymentStatus
    commits: Optional[List[str]] = None

    @property
    def success(self) -> bool:
        return self.outcome == HealingOutcome.SUCCESS


def build_fix_commit_message(error_text: str, logs: Optional[str], changes: Sequence[FileChange]) -> str:
    """Commit message recording the deployment error and every change made to fix it."""
    parts = [f"fix: deployment error\n\n{error_text}"]
    if logs:
        parts.append(logs[-COMMIT_ERROR_EXCERPT_CHARS:])
    parts.append("\n".join(f"- {change.description}" for change in changes))
    return "\n\n".join(parts)


class DeploymentMonitor:
    """Polls a hosting project's latest deployment and drives the fix loop."""

    def __init__(
        self,
        hosting: HostingProvisioner,
        github: GitHubClient,
        codegen: CodeGenerator,
        max_polls: int = 20,
        poll_interval: float = 5.0,
        max_fix_attempts: int = MAX_FIX_ATTEMPTS,
        redeploy_wait: float = 5.0,
        branch: str = "main",
        sleep: Sleep = asyncio.sleep,
    ):
        self.hosting = hosting
        self.github = github
        self.codegen = codegen
        self.max_polls = max_polls
        self.poll_interval = poll_interval
        self.max_fix_attempts = max_fix_attempts
        self.redeploy_wait = redeploy_wait
        self.branch = branch
        self._sleep = sleep

    async def wait_for_deployment(self, hosting_project_id: str) -> DeploymentStatus:
        """
        Poll the latest deployment until it settles.

        READY is success. ERROR is a failure carrying the build logs and is
        remediable. CANCELED and DELETED fail without remediation. Any other
        state is still in progress and is polled again after ``poll_interval``;
        running out of polls is a timeout failure.
        """
        for poll in range(1, self.max_polls + 1):
            check = await self.hosting.get_deployment_state(hosting_project_id)
            logger.debug(f"[VERCEL] Poll {poll}/{self.max_polls} for {hosting_project_id}: {check.state}")

            if check.state == DeploymentState.READY:
                return DeploymentStatus(success=True, state=check.state)
            if check.state == DeploymentState.ERROR:
                return DeploymentStatus(
                    success=False,
                    state=check.state,
                    error="Deployment failed",
                    logs=check.logs,
                    remediable=True,
                )
            if check.state in (DeploymentState.CANCELED, DeploymentState.DELETED):
                return DeploymentStatus(
                    success=False,
                    state=check.state,
                    error=f"Deployment {check.state.lower()}",
                )

            if poll < self.max_polls:
                await self._sleep(self.poll_interval)

        return DeploymentStatus(
            success=False,
            state=DeploymentState.TIMEOUT,
            error=f"Deployment did not finish after {self.max_polls} checks",
        )

    async def ensure_deployed(
        self,
        hosting_project_id: str,
        repo_url: str,
        on_fix_attempt: Optional[FixAttemptCallback] = None,
    ) -> HealingResult:
        """
        Wait for the deployment and repair it while the fix budget lasts.

        Each fix attempt fetches the current repository, asks the generator
        for a targeted fix, commits it and re-polls. An empty fix ends the
        loop as unrecoverable without consuming an attempt.

        Args:
            hosting_project_id: Hosting project whose deployments are watched
            repo_url: Repository the fixes are committed to
            on_fix_attempt: Called with ``(attempt, error_text)`` after each fix commit

        Returns:
            HealingResult with outcome success, exhausted, unrecoverable or not_remediable
        """
        fix_attempts = 0
        commits: List[str] = []
        status = await self.wait_for_deployment(hosting_project_id)

        while not status.success:
            if not status.remediable:
                logger.warning(f"[HEAL] {hosting_project_id}: {status.error}; no remediation possible")
                return HealingResult(HealingOutcome.NOT_REMEDIABLE, fix_attempts, status, commits)
            if fix_attempts >= self.max_fix_attempts:
                logger.error(f"[HEAL] {hosting_project_id}: fix attempts exhausted ({fix_attempts})")
                return HealingResult(HealingOutcome.EXHAUSTED, fix_attempts, status, commits)

            error_text = status.logs or status.error or "Unknown deployment error"
            logger.info(f"[HEAL] Generating fix {fix_attempts + 1}/{self.max_fix_attempts} for {hosting_project_id}")

            repo_content = await self.github.fetch_content(repo_url, self.branch)
            changes = await self.codegen.generate_fix(repo_content, error_text)
            if not changes:
                logger.error(f"[HEAL] {hosting_project_id}: generator returned no changes")
                return HealingResult(HealingOutcome.UNRECOVERABLE, fix_attempts, status, commits)

            message = build_fix_commit_message(status.error or "Deployment failed", status.logs, changes)
            commit_sha = await self.github.commit_files(
                repo_url,
                self.branch,
                [RepositoryFile(path=change.path, content=change.content) for change in changes],
                message,
            )
            commits.append(commit_sha)
            fix_attempts += 1
            logger.info(f"[HEAL] Committed fix {fix_attempts} ({commit_sha}) with {len(changes)} change(s)")

            if on_fix_attempt is not None:
                on_fix_attempt(fix_attempts, error_text)

            await self._sleep(self.redeploy_wait)
            status = await self.wait_for_deployment(hosting_project_id)

        logger.info(f"[HEAL] {hosting_project_id} deployed after {fix_attempts} fix attempt(s)")
        return HealingResult(HealingOutcome.SUCCESS, fix_attempts, status, commits)
