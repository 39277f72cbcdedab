"""Async client for the multiplexed chat / file-store endpoint."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..domain.edit_models import RemoteFileHandle, RepoConfig, RepoEntry, WriteResult

LOG = logging.getLogger("codeai.client")


class ChatRequestError(Exception):
    """The chat request was rejected before any stream was produced."""

    def __init__(self, status_code: int, error: Optional[str]) -> None:
        super().__init__(error or f"chat request failed with status {status_code}")
        self.status_code = status_code
        self.error = error


class RemoteStoreError(Exception):
    def __init__(self, action: str, status_code: int, detail: str = "") -> None:
        super().__init__(f"{action} failed with status {status_code}: {detail}")
        self.action = action
        self.status_code = status_code
        self.detail = detail


def _error_field(resp: httpx.Response) -> Optional[str]:
    try:
        data = resp.json()
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None


class ChatStream:
    """An accepted chat response whose body is still being received."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.status_code = response.status_code

    async def chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            if chunk:
                yield chunk


class FunctionClient:
    def __init__(
        self,
        url: str,
        api_key: str,
        repo: RepoConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self.url = url
        self.repo = repo
        self._headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _body(self, action: str, messages: Any) -> Dict[str, Any]:
        return {
            "messages": messages,
            "githubToken": self.repo.token,
            "repoOwner": self.repo.owner,
            "repoName": self.repo.name,
            "action": action,
        }

    async def _post(self, action: str, messages: Any) -> httpx.Response:
        return await self._client.post(self.url, json=self._body(action, messages), headers=self._headers)

    @asynccontextmanager
    async def chat(self, messages: List[Dict[str, Any]]) -> AsyncIterator[ChatStream]:
        request = self._client.build_request(
            "POST", self.url, json=self._body("chat", messages), headers=self._headers
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            LOG.warning("chat_transport_failed", extra={"err": str(exc)})
            raise ChatRequestError(0, None) from exc
        try:
            # 204 means the request was accepted but no stream will follow.
            if response.status_code >= 400 or response.status_code == 204:
                await response.aread()
                error = _error_field(response)
                LOG.warning("chat_request_rejected", extra={"status": response.status_code, "err": error})
                raise ChatRequestError(response.status_code, error)
            yield ChatStream(response)
        finally:
            await response.aclose()

    async def list_files(self, path: str = "") -> List[RepoEntry]:
        resp = await self._post("list-files", path)
        if resp.status_code >= 400:
            raise RemoteStoreError("list-files", resp.status_code, _error_field(resp) or resp.text)
        items = resp.json().get("files") or []
        return [
            RepoEntry(name=item.get("name", ""), path=item.get("path", ""), type=item.get("type", "file"))
            for item in items
            if isinstance(item, dict)
        ]

    async def read_file(self, path: str) -> Optional[RemoteFileHandle]:
        """Return the current version of ``path`` or ``None`` if it does not exist."""
        resp = await self._post("read-file", path)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise RemoteStoreError("read-file", resp.status_code, _error_field(resp) or resp.text)
        data = resp.json()
        return RemoteFileHandle(path=data.get("path") or path, sha=data.get("sha"), content=data.get("content") or "")

    async def write_file(
        self,
        path: str,
        content: str,
        sha: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> WriteResult:
        payload: Dict[str, Any] = {"path": path, "content": content}
        if sha:
            payload["sha"] = sha
        if commit_message:
            payload["commitMessage"] = commit_message
        resp = await self._post("write-file", payload)
        if resp.status_code >= 400:
            detail = _error_field(resp) or resp.text
            LOG.warning("write_file_rejected", extra={"path": path, "status": resp.status_code, "err": detail[:300]})
            return WriteResult(success=False, status_code=resp.status_code, message=detail)
        data = resp.json()
        return WriteResult(
            success=bool(data.get("success", True)),
            commit=data.get("commit") if isinstance(data.get("commit"), dict) else None,
            status_code=resp.status_code,
        )
