"""Hosting project, custom subdomain and DNS provisioning."""
from typing import Optional

from wisp.services.cloudflare import CloudflareClient
from wisp.services.vercel import DeploymentCheck, VercelClient
from wisp.utils.logger import logger


class HostingProvisioner:
    """Binds a project's repository to a hosting project reachable at ``{prefix}.{domain_suffix}``."""

    def __init__(
        self,
        vercel: VercelClient,
        cloudflare: CloudflareClient,
        domain_suffix: str,
        cname_target: str,
    ):
        self.vercel = vercel
        self.cloudflare = cloudflare
        self.domain_suffix = domain_suffix
        self.cname_target = cname_target

    def custom_domain(self, domain_prefix: str) -> str:
        return f"{domain_prefix}.{self.domain_suffix}"

    async def create_hosting_project(self, name: str) -> str:
        return await self.vercel.create_project(name)

    async def find_hosting_project(self, name: str) -> Optional[str]:
        return await self.vercel.find_project(name)

    async def find_dns_record(self, domain_prefix: str) -> Optional[str]:
        return await self.cloudflare.find_cname_record(self.custom_domain(domain_prefix))

    async def bind_domain(self, hosting_project_id: str, domain_prefix: str) -> str:
        domain = self.custom_domain(domain_prefix)
        await self.vercel.add_domain(hosting_project_id, domain)
        return domain

    async def create_dns_record(self, domain_prefix: str) -> str:
        return await self.cloudflare.create_cname_record(domain_prefix, self.cname_target)

    async def verify_domain(self, hosting_project_id: str, domain_prefix: str) -> bool:
        verified = await self.vercel.verify_domain(hosting_project_id, self.custom_domain(domain_prefix))
        logger.debug(f"[VERCEL] Domain {self.custom_domain(domain_prefix)} verified={verified}")
        return verified

    async def get_deployment_state(self, hosting_project_id: str) -> DeploymentCheck:
        return await self.vercel.get_latest_deployment(hosting_project_id)

    async def delete_hosting_project(self, hosting_project_id: str) -> None:
        await self.vercel.delete_project(hosting_project_id)

    async def delete_dns_record(self, dns_record_id: str) -> None:
        await self.cloudflare.delete_record(dns_record_id)
