"""Tests for the Vercel, Cloudflare and combined hosting clients."""
import json

import httpx
import pytest

from wisp.constants import DeploymentState
from wisp.services.cloudflare import CloudflareClient
from wisp.services.hosting import HostingProvisioner
from wisp.services.vercel import VercelClient
from wisp.utils.exceptions import ExternalServiceError


def make_vercel(handler) -> VercelClient:
    return VercelClient(
        "vc_test",
        team_id="product-studio",
        git_owner="productstudioinc",
        transport=httpx.MockTransport(handler),
    )


def make_cloudflare(handler) -> CloudflareClient:
    return CloudflareClient("cf_test", "zone-1", transport=httpx.MockTransport(handler))


def test_clients_require_credentials():
    with pytest.raises(ValueError):
        VercelClient(None, "team", "owner")
    with pytest.raises(ValueError):
        CloudflareClient("token", None)


@pytest.mark.asyncio
async def test_create_project_links_repository():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["team"] = request.url.params["teamId"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "prj_123", "name": "my-app"})

    project_id = await make_vercel(handler).create_project("my-app")

    assert project_id == "prj_123"
    assert seen["path"] == "/v10/projects"
    assert seen["team"] == "product-studio"
    assert seen["body"] == {
        "name": "my-app",
        "framework": "vite",
        "gitRepository": {"repo": "productstudioinc/my-app", "type": "github"},
    }


@pytest.mark.asyncio
async def test_vercel_failure_is_hosting_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"error": {"message": "Project already exists"}})

    with pytest.raises(ExternalServiceError) as exc_info:
        await make_vercel(handler).create_project("my-app")
    assert exc_info.value.system == "hosting"
    assert "Project already exists" in exc_info.value.message


@pytest.mark.asyncio
async def test_verify_domain_single_check():
    responses = iter([
        httpx.Response(400, json={"error": {"code": "missing_txt_record"}}),
        httpx.Response(200, json={"verified": False}),
        httpx.Response(200, json={"verified": True}),
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v9/projects/prj_123/domains/my-app.usewisp.app/verify"
        return next(responses)

    client = make_vercel(handler)
    assert await client.verify_domain("prj_123", "my-app.usewisp.app") is False
    assert await client.verify_domain("prj_123", "my-app.usewisp.app") is False
    assert await client.verify_domain("prj_123", "my-app.usewisp.app") is True


@pytest.mark.asyncio
async def test_latest_deployment_without_deployments():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["projectId"] == "prj_123"
        assert request.url.params["limit"] == "1"
        return httpx.Response(200, json={"deployments": []})

    check = await make_vercel(handler).get_latest_deployment("prj_123")
    assert check.state == DeploymentState.NO_DEPLOYMENTS


@pytest.mark.asyncio
async def test_latest_deployment_in_progress_has_no_logs():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"deployments": [{"uid": "dpl_1", "state": "BUILDING"}]})

    check = await make_vercel(handler).get_latest_deployment("prj_123")
    assert check.state == "BUILDING"
    assert check.deployment_id == "dpl_1"
    assert check.logs is None


@pytest.mark.asyncio
async def test_errored_deployment_carries_build_logs():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v6/deployments":
            return httpx.Response(200, json={"deployments": [{"uid": "dpl_1", "readyState": "ERROR"}]})
        assert request.url.path == "/v3/deployments/dpl_1/events"
        return httpx.Response(200, json=[
            {"type": "stdout", "text": "Running build"},
            {"type": "stderr", "payload": {"text": "Error: Cannot find module 'react-router'"}},
            {"type": "delimiter"},
        ])

    check = await make_vercel(handler).get_latest_deployment("prj_123")
    assert check.state == DeploymentState.ERROR
    assert check.logs == "Running build\nError: Cannot find module 'react-router'"


@pytest.mark.asyncio
async def test_delete_vercel_project_is_idempotent():
    statuses = iter([204, 404])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(next(statuses))

    client = make_vercel(handler)
    await client.delete_project("prj_123")
    await client.delete_project("prj_123")


@pytest.mark.asyncio
async def test_create_cname_record():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "result": {"id": "rec_456"}})

    record_id = await make_cloudflare(handler).create_cname_record("my-app", "cname.vercel-dns.com.")

    assert record_id == "rec_456"
    assert seen["path"] == "/client/v4/zones/zone-1/dns_records"
    assert seen["body"]["type"] == "CNAME"
    assert seen["body"]["name"] == "my-app"
    assert seen["body"]["content"] == "cname.vercel-dns.com."
    assert seen["body"]["proxied"] is False


@pytest.mark.asyncio
async def test_cloudflare_unsuccessful_response_is_dns_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "errors": [{"message": "Record already exists"}]})

    with pytest.raises(ExternalServiceError) as exc_info:
        await make_cloudflare(handler).create_cname_record("my-app", "cname.vercel-dns.com.")
    assert exc_info.value.system == "dns"


@pytest.mark.asyncio
async def test_delete_dns_record_is_idempotent_but_reports_failures():
    statuses = iter([200, 404, 500])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses), json={})

    client = make_cloudflare(handler)
    await client.delete_record("rec_456")
    await client.delete_record("rec_456")
    with pytest.raises(ExternalServiceError):
        await client.delete_record("rec_456")


@pytest.mark.asyncio
async def test_provisioner_binds_prefix_under_platform_suffix():
    vercel_calls = []
    cloudflare_calls = []

    def vercel_handler(request: httpx.Request) -> httpx.Response:
        vercel_calls.append((request.url.path, json.loads(request.content) if request.content else None))
        if request.url.path.endswith("/verify"):
            return httpx.Response(200, json={"verified": True})
        return httpx.Response(200, json={"name": "my-app.usewisp.app"})

    def cloudflare_handler(request: httpx.Request) -> httpx.Response:
        cloudflare_calls.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "result": {"id": "rec_456"}})

    provisioner = HostingProvisioner(
        make_vercel(vercel_handler),
        make_cloudflare(cloudflare_handler),
        domain_suffix="usewisp.app",
        cname_target="cname.vercel-dns.com.",
    )

    assert await provisioner.bind_domain("prj_123", "my-app") == "my-app.usewisp.app"
    assert vercel_calls[0] == ("/v10/projects/prj_123/domains", {"name": "my-app.usewisp.app"})
    assert await provisioner.create_dns_record("my-app") == "rec_456"
    assert cloudflare_calls[0]["content"] == "cname.vercel-dns.com."
    assert await provisioner.verify_domain("prj_123", "my-app") is True
    assert vercel_calls[-1][0] == "/v9/projects/prj_123/domains/my-app.usewisp.app/verify"


@pytest.mark.asyncio
async def test_cloudflare_gateway_page_is_dns_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    with pytest.raises(ExternalServiceError) as exc_info:
        await make_cloudflare(handler).create_cname_record("my-app", "cname.vercel-dns.com.")

    assert exc_info.value.system == "dns"
    assert exc_info.value.details["status_code"] == 502
    assert "Bad gateway" in exc_info.value.message


@pytest.mark.asyncio
async def test_cloudflare_non_json_success_body_is_dns_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>Please wait</html>")

    with pytest.raises(ExternalServiceError) as exc_info:
        await make_cloudflare(handler).create_cname_record("my-app", "cname.vercel-dns.com.")

    assert exc_info.value.system == "dns"
    assert "non-JSON" in exc_info.value.message


@pytest.mark.asyncio
async def test_vercel_non_json_body_is_hosting_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>Edge error</html>")

    with pytest.raises(ExternalServiceError) as exc_info:
        await make_vercel(handler).get_latest_deployment("prj_123")

    assert exc_info.value.system == "hosting"
    assert exc_info.value.operation == "list_deployments"


@pytest.mark.asyncio
async def test_find_vercel_project_by_name():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        if request.url.path == "/v9/projects/my-app":
            return httpx.Response(200, json={"id": "prj_123", "name": "my-app"})
        return httpx.Response(404, json={"error": {"code": "not_found"}})

    client = make_vercel(handler)
    assert await client.find_project("my-app") == "prj_123"
    assert await client.find_project("missing") is None


@pytest.mark.asyncio
async def test_find_cname_record_by_full_name():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        if request.url.params["name"] == "my-app.usewisp.app":
            return httpx.Response(200, json={"success": True, "result": [{"id": "rec_456"}]})
        return httpx.Response(200, json={"success": True, "result": []})

    provisioner = HostingProvisioner(
        make_vercel(lambda request: httpx.Response(404)),
        make_cloudflare(handler),
        domain_suffix="usewisp.app",
        cname_target="cname.vercel-dns.com.",
    )

    assert await provisioner.find_dns_record("my-app") == "rec_456"
    assert seen["params"] == {"type": "CNAME", "name": "my-app.usewisp.app"}
    assert await provisioner.find_dns_record("other") is None
