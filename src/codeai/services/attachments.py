from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

import httpx

from ..domain.edit_models import Attachment
from .retry import RetryPolicy, upload_policy

LOG = logging.getLogger("codeai.attachments")


class ObjectStorage(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    def public_url(self, path: str) -> str: ...


class StorageUploadError(Exception):
    def __init__(self, path: str, status_code: int, detail: str = "") -> None:
        super().__init__(f"upload of {path} failed with status {status_code}: {detail}")
        self.path = path
        self.status_code = status_code


class BucketStorage:
    """Object storage bucket reached over its REST interface."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str = "chat-images",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._headers = {"Authorization": f"Bearer {api_key}", "apikey": api_key}
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        resp = await self._client.post(
            f"{self.base_url}/storage/v1/object/{self.bucket}/{path}",
            content=data,
            headers={
                **self._headers,
                "Content-Type": content_type,
                "cache-control": "3600",
                "x-upsert": "false",
            },
        )
        if resp.status_code >= 400:
            raise StorageUploadError(path, resp.status_code, resp.text[:300])

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"


@dataclass
class UploadReport:
    urls: List[str] = field(default_factory=list)
    failed: int = 0

    @property
    def all_failed(self) -> bool:
        return not self.urls and self.failed > 0


class AttachmentUploader:
    def __init__(self, storage: ObjectStorage, policy: Optional[RetryPolicy] = None) -> None:
        self.storage = storage
        self.policy = policy or upload_policy()

    async def upload_one(self, attachment: Attachment) -> Optional[str]:
        path = f"{uuid.uuid4()}.{attachment.extension}"

        async def attempt(n: int) -> str:
            await self.storage.upload(path, attachment.data, attachment.content_type)
            return self.storage.public_url(path)

        outcome = await self.policy.run(attempt, label=f"upload {attachment.filename}")
        if not outcome.succeeded:
            LOG.error("attachment_upload_failed", extra={"attachment": attachment.filename})
            return None
        return outcome.value

    async def upload_all(self, attachments: Sequence[Attachment]) -> UploadReport:
        """Upload image attachments concurrently; failures stay isolated."""
        images = [a for a in attachments if a.is_image]
        skipped = len(attachments) - len(images)
        if skipped:
            LOG.info("attachments_skipped_non_image", extra={"count": skipped})
        results = await asyncio.gather(*(self.upload_one(a) for a in images))
        urls = [url for url in results if url]
        return UploadReport(urls=urls, failed=len(images) - len(urls))
