"""Supabase Storage service for screenshot uploads."""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from wisp.utils.logger import logger


@dataclass
class UploadResult:
    """Result of a file upload operation."""
    success: bool
    url: Optional[str] = None
    error: Optional[str] = None


def encode_storage_path(storage_path: str) -> str:
    """Quote each path segment, keeping the slashes that define the directory structure."""
    return "/".join(quote(segment, safe="") for segment in storage_path.split("/"))


class StorageService:
    """Service for uploading files to a public Supabase Storage bucket using the REST API."""

    def __init__(
        self,
        supabase_url: Optional[str],
        supabase_key: Optional[str],
        bucket: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not supabase_url or not supabase_key:
            raise ValueError(
                "Supabase URL and secret key must be configured. "
                "Set SUPABASE_URL and SUPABASE_SECRET_KEY environment variables."
            )
        self.supabase_url = supabase_url.rstrip("/")
        self.supabase_key = supabase_key
        self.bucket = bucket
        self.storage_url = f"{self.supabase_url}/storage/v1"
        self._transport = transport
        self._bucket_checked = False

    def _headers(self, content_type: str = "application/json") -> dict:
        return {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Content-Type": content_type,
        }

    async def _ensure_bucket_exists(self, client: httpx.AsyncClient) -> bool:
        """Ensure the storage bucket exists, create it as public if it doesn't."""
        if self._bucket_checked:
            return True

        check_response = await client.get(f"{self.storage_url}/bucket/{self.bucket}", headers=self._headers())
        if check_response.status_code == 200:
            self._bucket_checked = True
            return True

        if check_response.status_code in (400, 404):
            create_response = await client.post(
                f"{self.storage_url}/bucket",
                headers=self._headers(),
                json={"id": self.bucket, "name": self.bucket, "public": True},
            )
            if create_response.status_code in (200, 201):
                self._bucket_checked = True
                return True
            logger.error(
                f"[STORAGE] Failed to create bucket {self.bucket}: "
                f"{create_response.status_code} - {create_response.text}"
            )
            return False

        logger.error(
            f"[STORAGE] Failed to check bucket {self.bucket}: "
            f"{check_response.status_code} - {check_response.text}"
        )
        return False

    def public_url(self, storage_path: str) -> str:
        return f"{self.storage_url}/object/public/{self.bucket}/{encode_storage_path(storage_path)}"

    async def upload_bytes(self, content: bytes, storage_path: str, content_type: str) -> UploadResult:
        """
        Upload raw bytes, overwriting any existing object at the same path.

        Args:
            content: File content
            storage_path: Path in the bucket (e.g., "{user_id}/{project_id}/screenshot.jpg")
            content_type: MIME type of the content

        Returns:
            UploadResult with success status and public URL
        """
        upload_url = f"{self.storage_url}/object/{self.bucket}/{encode_storage_path(storage_path)}"
        headers = self._headers(content_type)
        headers["x-upsert"] = "true"

        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                if not await self._ensure_bucket_exists(client):
                    return UploadResult(
                        success=False,
                        error=f"Storage bucket '{self.bucket}' does not exist and could not be created",
                    )

                logger.info(f"[STORAGE] Uploading {len(content)} bytes to {storage_path}")
                response = await client.post(upload_url, headers=headers, content=content)
        except httpx.HTTPError as e:
            logger.error(f"[STORAGE] Upload of {storage_path} failed: {e}", exc_info=True)
            return UploadResult(success=False, error=str(e))

        if response.status_code not in (200, 201):
            logger.error(f"[STORAGE] Storage upload failed: {response.status_code} - {response.text}")
            return UploadResult(
                success=False,
                error=f"Upload failed: {response.status_code} - {response.text}",
            )

        url = self.public_url(storage_path)
        logger.info(f"[STORAGE] Upload successful: {url}")
        return UploadResult(success=True, url=url)
