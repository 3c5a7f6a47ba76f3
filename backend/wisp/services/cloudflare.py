"""Cloudflare DNS records for project subdomains."""
from typing import Optional

import httpx

from wisp.utils.exceptions import ExternalServiceError, response_json
from wisp.utils.logger import logger

SYSTEM = "dns"


class CloudflareClient:
    """DNS capability backed by the Cloudflare v4 API."""

    API_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        api_token: Optional[str],
        zone_id: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_token or not zone_id:
            raise ValueError(
                "Cloudflare API token and zone ID must be configured. "
                "Set CLOUDFLARE_API_TOKEN and CLOUDFLARE_ZONE_ID environment variables."
            )
        self.api_token = api_token
        self.zone_id = zone_id
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.API_URL,
            headers={"Authorization": f"Bearer {self.api_token}"},
            timeout=30.0,
            transport=self._transport,
        )

    async def create_cname_record(self, name: str, target: str) -> str:
        """Create an unproxied CNAME ``name -> target``; returns the record id."""
        path = f"/zones/{self.zone_id}/dns_records"
        try:
            async with self._client() as client:
                response = await client.post(
                    path,
                    json={"type": "CNAME", "name": name, "content": target, "proxied": False, "ttl": 1},
                )
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SYSTEM, f"Cloudflare request failed: {e}", operation="create_dns_record", cause=e
            )

        self._raise_for_status(response, "create_dns_record", name=name)
        data = response_json(response, SYSTEM, "create_dns_record")
        record_id = (data.get("result") or {}).get("id")
        if not data.get("success") or not record_id:
            logger.error(f"[DNS] Failed to create record {name}: {response.status_code} - {response.text}")
            raise ExternalServiceError(
                SYSTEM,
                f"Cloudflare create_dns_record failed: {response.status_code} - {response.text}",
                operation="create_dns_record",
                details={"name": name, "status_code": response.status_code},
            )

        logger.info(f"[DNS] Created CNAME {name} -> {target}: {record_id}")
        return record_id

    async def find_cname_record(self, fqdn: str) -> Optional[str]:
        """Id of the CNAME record named ``fqdn``, or None when there is none."""
        path = f"/zones/{self.zone_id}/dns_records"
        try:
            async with self._client() as client:
                response = await client.get(path, params={"type": "CNAME", "name": fqdn})
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SYSTEM, f"Cloudflare request failed: {e}", operation="find_dns_record", cause=e
            )

        self._raise_for_status(response, "find_dns_record", name=fqdn)
        records = response_json(response, SYSTEM, "find_dns_record").get("result") or []
        return records[0]["id"] if records else None

    def _raise_for_status(self, response: httpx.Response, operation: str, **details) -> None:
        if response.status_code < 400:
            return
        logger.error(f"[DNS] {operation} failed: {response.status_code} - {response.text}")
        raise ExternalServiceError(
            SYSTEM,
            f"Cloudflare {operation} failed: {response.status_code} - {response.text}",
            operation=operation,
            details={**details, "status_code": response.status_code},
        )

    async def delete_record(self, record_id: str) -> None:
        """Delete a DNS record; an already-deleted record counts as success."""
        path = f"/zones/{self.zone_id}/dns_records/{record_id}"
        try:
            async with self._client() as client:
                response = await client.delete(path)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SYSTEM, f"Cloudflare request failed: {e}", operation="delete_dns_record", cause=e
            )

        if response.status_code == 404:
            logger.info(f"[DNS] Record {record_id} already deleted")
            return
        if response.status_code >= 400:
            logger.error(f"[DNS] Failed to delete record {record_id}: {response.status_code} - {response.text}")
            raise ExternalServiceError(
                SYSTEM,
                f"Cloudflare delete_dns_record failed: {response.status_code} - {response.text}",
                operation="delete_dns_record",
                details={"record_id": record_id, "status_code": response.status_code},
            )
        logger.info(f"[DNS] Deleted record {record_id}")
