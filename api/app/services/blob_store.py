from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import quote

import httpx

from app.core.config import get_settings


class BlobStoreError(Exception):
    """Raised when a file cannot be written to the blob store."""


class BlobStoreUnavailableError(BlobStoreError):
    """Raised when the blob store is not configured."""


@dataclass(slots=True)
class StoredBlob:
    storage_path: str
    public_url: str


class HttpBlobStore:
    """Object-storage client speaking the Supabase Storage REST dialect."""

    def __init__(
        self,
        base_url: str | None,
        service_key: str | None,
        bucket: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.service_key = service_key
        self.bucket = bucket
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def put(self, path: str, content: bytes, *, content_type: str | None = None) -> StoredBlob:
        if not self.base_url or not self.service_key:
            raise BlobStoreUnavailableError("RB_BLOB_STORE_URL and RB_BLOB_STORE_SERVICE_KEY are required")

        object_path = f"{self.bucket}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": content_type or "application/octet-stream",
            "Cache-Control": "3600",
            "x-upsert": "false",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/object/{quote(object_path)}",
                    content=content,
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise BlobStoreError(f"failed to store {object_path}: {exc}") from exc

        return StoredBlob(
            storage_path=object_path,
            public_url=f"{self.base_url}/object/public/{quote(object_path)}",
        )


@lru_cache
def get_blob_store() -> HttpBlobStore:
    settings = get_settings()
    return HttpBlobStore(
        base_url=settings.blob_store_url,
        service_key=settings.blob_store_service_key,
        bucket=settings.blob_store_bucket,
        timeout_seconds=settings.blob_store_timeout_seconds,
    )
