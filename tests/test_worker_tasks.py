"""Tests for the ARQ tasks and job queue helpers."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from arq import Retry

from wisp.services.orchestrator import Orchestrator
from wisp.utils import job_queue
from wisp.utils.exceptions import FixGenerationExhaustedError, ProjectBusyError, TeardownError
from wisp.workers import tasks

PROJECT_ID = "6f1c1f5e-3b8e-4c1e-9a57-2d8f3f0f1a11"


@pytest.fixture
def ctx():
    return {"orchestrator": MagicMock(spec=Orchestrator)}


@pytest.fixture
def locks():
    with patch("wisp.workers.tasks.acquire_project_lock", new=AsyncMock(return_value="tok-1")) as acquire, \
            patch("wisp.workers.tasks.release_project_lock", new=AsyncMock(return_value=True)) as release:
        yield SimpleNamespace(acquire=acquire, release=release)


@pytest.mark.asyncio
async def test_provision_project_success(ctx, locks):
    ctx["orchestrator"].run_pipeline.return_value = SimpleNamespace(custom_domain="my-app.usewisp.app")

    result = await tasks.provision_project(ctx, PROJECT_ID, {"Theme?": "Dark"})

    assert result == {"success": True, "project_id": PROJECT_ID, "custom_domain": "my-app.usewisp.app"}
    ctx["orchestrator"].run_pipeline.assert_awaited_once_with(PROJECT_ID, questions={"Theme?": "Dark"})
    locks.acquire.assert_awaited_once_with(PROJECT_ID)
    locks.release.assert_awaited_once_with(PROJECT_ID, "tok-1")


@pytest.mark.asyncio
async def test_provision_project_failure_returns_structured_result(ctx, locks):
    ctx["orchestrator"].run_pipeline.side_effect = FixGenerationExhaustedError("still failing")

    result = await tasks.provision_project(ctx, PROJECT_ID)

    assert result["success"] is False
    assert result["code"] == "FIX_GENERATION_EXHAUSTED"
    locks.release.assert_awaited_once_with(PROJECT_ID, "tok-1")


@pytest.mark.asyncio
async def test_locked_project_is_skipped(ctx, locks):
    locks.acquire.return_value = None

    result = await tasks.provision_project(ctx, PROJECT_ID)

    assert result["success"] is False
    ctx["orchestrator"].run_pipeline.assert_not_awaited()
    locks.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_and_teardown_tasks(ctx, locks):
    assert (await tasks.update_project(ctx, PROJECT_ID, "Add due dates"))["success"] is True
    ctx["orchestrator"].update_project.assert_awaited_once_with(PROJECT_ID, "Add due dates", questions=None)

    ctx["orchestrator"].teardown.side_effect = TeardownError("partial", failures={"dns_record": RuntimeError("500")})
    result = await tasks.teardown_project(ctx, PROJECT_ID)
    assert result["success"] is False
    assert result["code"] == "TEARDOWN_FAILED"


@pytest.mark.asyncio
async def test_teardown_waits_for_running_pipeline(ctx, locks):
    locks.acquire.return_value = None

    with pytest.raises(Retry) as exc_info:
        await tasks.teardown_project(ctx, PROJECT_ID)

    assert exc_info.value.defer_score == tasks.LOCK_RETRY_DEFER * 1000
    ctx["orchestrator"].teardown.assert_not_awaited()
    locks.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_teardown_runs_once_lock_is_free(ctx, locks):
    result = await tasks.teardown_project(ctx, PROJECT_ID)

    assert result == {"success": True, "project_id": PROJECT_ID}
    ctx["orchestrator"].teardown.assert_awaited_once_with(PROJECT_ID)
    locks.release.assert_awaited_once_with(PROJECT_ID, "tok-1")


@pytest.mark.asyncio
async def test_delete_user_waits_for_busy_projects(ctx):
    ctx["orchestrator"].delete_user.side_effect = ProjectBusyError("1 project(s) of user user-1 are still being processed")

    with pytest.raises(Retry):
        await tasks.delete_user(ctx, "user-1")


@pytest.mark.asyncio
async def test_delete_user_task(ctx):
    result = await tasks.delete_user(ctx, "user-1")

    assert result == {"success": True, "user_id": "user-1"}
    ctx["orchestrator"].delete_user.assert_awaited_once_with("user-1")


@pytest.mark.asyncio
async def test_queue_provisioning_uses_deterministic_job_id():
    redis = MagicMock()
    redis.enqueue_job = AsyncMock(return_value=MagicMock())
    redis.aclose = AsyncMock()

    with patch("wisp.utils.job_queue.create_pool", new=AsyncMock(return_value=redis)):
        assert await job_queue.queue_provisioning(PROJECT_ID, {"Theme?": "Dark"}) is True

    redis.enqueue_job.assert_awaited_once_with(
        "provision_project", PROJECT_ID, {"Theme?": "Dark"}, _job_id=f"provision:{PROJECT_ID}"
    )
    redis.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_duplicate_job_counts_as_queued():
    redis = MagicMock()
    redis.enqueue_job = AsyncMock(return_value=None)
    redis.aclose = AsyncMock()

    with patch("wisp.utils.job_queue.create_pool", new=AsyncMock(return_value=redis)):
        assert await job_queue.queue_teardown(PROJECT_ID) is True


@pytest.mark.asyncio
async def test_unreachable_queue_reports_failure():
    with patch("wisp.utils.job_queue.create_pool", new=AsyncMock(side_effect=OSError("connection refused"))):
        assert await job_queue.queue_user_deletion("user-1") is False
