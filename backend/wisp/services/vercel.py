"""Vercel hosting projects, domains and deployment state."""
from dataclasses import dataclass
from typing import Optional

import httpx

from wisp.constants import DeploymentState
from wisp.utils.exceptions import ExternalServiceError, response_json
from wisp.utils.logger import logger

SYSTEM = "hosting"


@dataclass
class DeploymentCheck:
    """Single observation of a project's latest deployment."""
    state: str
    deployment_id: Optional[str] = None
    logs: Optional[str] = None


class VercelClient:
    """Hosting capability backed by the Vercel REST API."""

    API_URL = "https://api.vercel.com"

    def __init__(
        self,
        token: Optional[str],
        team_id: str,
        git_owner: str,
        framework: str = "vite",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not token:
            raise ValueError("Vercel token must be configured. Set VERCEL_TOKEN environment variable.")
        self.token = token
        self.team_id = team_id
        self.git_owner = git_owner
        self.framework = framework
        self._transport = transport

    def _client(self, timeout: float = 30.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.API_URL,
            headers={"Authorization": f"Bearer {self.token}"},
            params={"teamId": self.team_id},
            timeout=timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        ok_statuses: tuple = (),
        **kwargs,
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SYSTEM,
                f"Vercel request failed during {operation}: {e}",
                operation=operation,
                details={"path": path},
                cause=e,
            )

        if response.status_code >= 400 and response.status_code not in ok_statuses:
            logger.error(f"[VERCEL] {operation} failed: {response.status_code} - {response.text}")
            raise ExternalServiceError(
                SYSTEM,
                f"Vercel {operation} failed: {response.status_code} - {response.text}",
                operation=operation,
                details={"path": path, "status_code": response.status_code},
            )
        return response

    async def create_project(self, name: str) -> str:
        """Create a hosting project bound to ``{git_owner}/{name}``; returns its id."""
        response = await self._request(
            "POST",
            "/v10/projects",
            "create_project",
            json={
                "name": name,
                "framework": self.framework,
                "gitRepository": {"repo": f"{self.git_owner}/{name}", "type": "github"},
            },
        )
        project_id = response_json(response, SYSTEM, "create_project")["id"]
        logger.info(f"[VERCEL] Created project {name}: {project_id}")
        return project_id

    async def find_project(self, name: str) -> Optional[str]:
        """Id of the hosting project called ``name``, or None when it does not exist."""
        response = await self._request("GET", f"/v9/projects/{name}", "get_project", ok_statuses=(404,))
        if response.status_code == 404:
            return None
        return response_json(response, SYSTEM, "get_project")["id"]

    async def add_domain(self, project_id: str, domain: str) -> None:
        await self._request(
            "POST",
            f"/v10/projects/{project_id}/domains",
            "add_project_domain",
            json={"name": domain},
        )
        logger.info(f"[VERCEL] Bound {domain} to project {project_id}")

    async def verify_domain(self, project_id: str, domain: str) -> bool:
        """Single verification check; a pending verification reads as False."""
        response = await self._request(
            "POST",
            f"/v9/projects/{project_id}/domains/{domain}/verify",
            "verify_project_domain",
            ok_statuses=(400, 409),
        )
        if response.status_code >= 400:
            return False
        return bool(response_json(response, SYSTEM, "verify_project_domain").get("verified"))

    async def get_latest_deployment(self, project_id: str) -> DeploymentCheck:
        """State of the most recent deployment, with build logs when it errored."""
        response = await self._request(
            "GET",
            "/v6/deployments",
            "list_deployments",
            params={"projectId": project_id, "limit": 1},
        )
        deployments = response_json(response, SYSTEM, "list_deployments").get("deployments", [])
        if not deployments:
            return DeploymentCheck(state=DeploymentState.NO_DEPLOYMENTS)

        latest = deployments[0]
        deployment_id = latest.get("uid") or latest.get("id")
        state = latest.get("state") or latest.get("readyState") or "UNKNOWN"

        logs = None
        if state == DeploymentState.ERROR:
            logs = await self.get_build_logs(deployment_id)
        return DeploymentCheck(state=state, deployment_id=deployment_id, logs=logs)

    async def get_build_logs(self, deployment_id: str) -> str:
        response = await self._request(
            "GET",
            f"/v3/deployments/{deployment_id}/events",
            "get_deployment_events",
            params={"builds": 1},
        )
        lines = []
        for event in response_json(response, SYSTEM, "get_deployment_events"):
            text = event.get("text") or (event.get("payload") or {}).get("text")
            if text:
                lines.append(text)
        return "\n".join(lines)

    async def delete_project(self, project_id: str) -> None:
        """Delete a hosting project; an already-deleted project counts as success."""
        response = await self._request(
            "DELETE",
            f"/v9/projects/{project_id}",
            "delete_project",
            ok_statuses=(404,),
        )
        if response.status_code == 404:
            logger.info(f"[VERCEL] Project {project_id} already deleted")
        else:
            logger.info(f"[VERCEL] Deleted project {project_id}")
