"""Tests for project and user teardown."""
from contextlib import asynccontextmanager

import pytest

from wisp.constants import ProjectStatus
from wisp.services.teardown import Teardown
from wisp.utils.exceptions import ExternalServiceError, NotFoundError, ProjectBusyError, TeardownError


@pytest.fixture
def teardown(store, github, hosting):
    return Teardown(store, github, hosting)


def provisioned_project(store, user, name="my-app"):
    project = store.create(user.id, name)
    store.update_details(
        project.id,
        hosting_project_id=f"prj_{name}",
        dns_record_id=f"rec_{name}",
        custom_domain=f"{name}.usewisp.app",
    )
    store.update_status(project.id, ProjectStatus.DEPLOYING, "Deploying")
    return store.update_status(project.id, ProjectStatus.DEPLOYED, "Live")


@pytest.mark.asyncio
async def test_teardown_deletes_every_resource_then_record(teardown, store, user, github, hosting):
    project = provisioned_project(store, user)

    await teardown.teardown(project.id)

    github.delete_repository.assert_awaited_once_with("productstudioinc", "my-app")
    hosting.delete_dns_record.assert_awaited_once_with("rec_my-app")
    hosting.delete_hosting_project.assert_awaited_once_with("prj_my-app")
    assert store.history[-1][0] == ProjectStatus.DELETED
    with pytest.raises(NotFoundError):
        store.get_by_id(project.id)


@pytest.mark.asyncio
async def test_teardown_twice_does_not_raise(teardown, store, user, github):
    project = provisioned_project(store, user)

    await teardown.teardown(project.id)
    await teardown.teardown(project.id)

    assert github.delete_repository.await_count == 1


@pytest.mark.asyncio
async def test_partial_failure_attempts_all_deletes_and_keeps_record(teardown, store, user, github, hosting):
    project = provisioned_project(store, user)
    hosting.delete_dns_record.side_effect = ExternalServiceError("dns", "Cloudflare 500")

    with pytest.raises(TeardownError) as exc_info:
        await teardown.teardown(project.id)

    assert set(exc_info.value.failures) == {"dns_record"}
    github.delete_repository.assert_awaited_once()
    hosting.delete_hosting_project.assert_awaited_once()
    remaining = store.get_by_id(project.id)
    assert remaining.status == ProjectStatus.DEPLOYED
    assert remaining.dns_record_id == "rec_my-app"


@pytest.mark.asyncio
async def test_failed_teardown_can_be_retried(teardown, store, user, hosting):
    project = provisioned_project(store, user)
    hosting.delete_hosting_project.side_effect = [ExternalServiceError("hosting", "Vercel 500"), None]

    with pytest.raises(TeardownError):
        await teardown.teardown(project.id)
    await teardown.teardown(project.id)

    assert hosting.delete_hosting_project.await_count == 2
    with pytest.raises(NotFoundError):
        store.get_by_id(project.id)


@pytest.mark.asyncio
async def test_partially_provisioned_project_only_deletes_recorded_resources(teardown, store, user, github, hosting):
    project = store.create(user.id, "half-done")
    store.update_status(project.id, ProjectStatus.FAILED, "Repository creation failed")

    await teardown.teardown(project.id)

    github.delete_repository.assert_awaited_once_with("productstudioinc", "half-done")
    hosting.delete_dns_record.assert_not_awaited()
    hosting.delete_hosting_project.assert_not_awaited()
    with pytest.raises(NotFoundError):
        store.get_by_id(project.id)


@pytest.mark.asyncio
async def test_user_deletion_cascades_to_projects(teardown, store, user, github):
    provisioned_project(store, user, "first")
    provisioned_project(store, user, "second")

    await teardown.teardown_user(user.id)

    assert github.delete_repository.await_count == 2
    with pytest.raises(NotFoundError):
        store.get_user(user.id)


@pytest.mark.asyncio
async def test_user_is_kept_when_a_project_teardown_fails(teardown, store, user, hosting):
    provisioned_project(store, user, "first")
    provisioned_project(store, user, "second")

    async def delete_hosting_project(hosting_project_id):
        if hosting_project_id == "prj_second":
            raise ExternalServiceError("hosting", "Vercel 500")

    hosting.delete_hosting_project.side_effect = delete_hosting_project

    with pytest.raises(TeardownError) as exc_info:
        await teardown.teardown_user(user.id)

    assert set(exc_info.value.failures) == {"second"}
    assert store.get_user(user.id).id == user.id
    assert [p.name for p in store.list_by_user(user.id)] == ["second"]


def project_locks(busy=()):
    """In-memory stand-in for the Redis project lock; ids in ``busy`` are held elsewhere."""
    acquired = []

    @asynccontextmanager
    async def lock(project_id):
        if project_id in busy:
            raise ProjectBusyError(f"Project {project_id} is already being processed")
        acquired.append(project_id)
        yield "token"

    lock.acquired = acquired
    return lock


@pytest.mark.asyncio
async def test_user_cascade_holds_each_project_lock(store, user, github, hosting):
    first = provisioned_project(store, user, "first")
    second = provisioned_project(store, user, "second")
    locks = project_locks()

    await Teardown(store, github, hosting, lock=locks).teardown_user(user.id)

    assert sorted(locks.acquired) == sorted([str(first.id), str(second.id)])
    with pytest.raises(NotFoundError):
        store.get_user(user.id)


@pytest.mark.asyncio
async def test_user_cascade_defers_project_with_running_pipeline(store, user, github, hosting):
    provisioned_project(store, user, "idle")
    running = provisioned_project(store, user, "running")
    locks = project_locks(busy={str(running.id)})

    with pytest.raises(ProjectBusyError) as exc_info:
        await Teardown(store, github, hosting, lock=locks).teardown_user(user.id)

    assert exc_info.value.details["projects"] == ["running"]
    hosting.delete_hosting_project.assert_awaited_once_with("prj_idle")
    assert [p.name for p in store.list_by_user(user.id)] == ["running"]
    assert store.get_user(user.id).id == user.id
