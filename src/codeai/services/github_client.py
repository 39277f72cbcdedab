from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..observability.metrics import GITHUB_REQUESTS

LOG = logging.getLogger("codeai.github")

_TIMEOUT = (5, 30)


class GitHubError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _build_session() -> requests.Session:
    session = requests.Session()
    # Only reads are retried transparently; a retried PUT could commit twice.
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def decode_content(encoded: str) -> str:
    """Decode GitHub's base64 file body (wrapped at 60 columns) to text."""
    raw = base64.b64decode(encoded.replace("\n", ""))
    return raw.decode("utf-8", errors="replace")


def encode_content(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class GitHubClient:
    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        api_url: str = "https://api.github.com",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self._session = session or _build_session()
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _url(self, suffix: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/{suffix}"

    def _request(self, method: str, suffix: str, action: str, **kwargs: Any) -> requests.Response:
        resp = self._session.request(method, self._url(suffix), headers=self._headers, timeout=_TIMEOUT, **kwargs)
        GITHUB_REQUESTS.labels(action=action, status=str(resp.status_code)).inc()
        return resp

    def list_directory(self, path: str = "") -> List[Dict[str, Any]]:
        resp = self._request("GET", f"contents/{path}", "list")
        if not resp.ok:
            raise GitHubError(resp.status_code, f"GitHub API error: {resp.status_code} - {resp.text}")
        data = resp.json()
        # A file path returns a single object rather than a listing.
        items = data if isinstance(data, list) else [data]
        return [{"name": i.get("name"), "path": i.get("path"), "type": i.get("type")} for i in items]

    def read_file(self, path: str) -> Dict[str, str]:
        resp = self._request("GET", f"contents/{path}", "read")
        if not resp.ok:
            raise GitHubError(resp.status_code, f"File not found: {path} ({resp.status_code})")
        data = resp.json()
        if not isinstance(data, dict) or "content" not in data:
            raise GitHubError(400, f"Not a file: {path}")
        try:
            content = decode_content(data.get("content") or "")
        except (binascii.Error, ValueError) as exc:
            raise GitHubError(502, f"Could not decode {path}: {exc}") from exc
        return {"content": content, "sha": data.get("sha", ""), "path": data.get("path", path)}

    def read_text(self, path: str) -> Optional[str]:
        """Best-effort read used for prompt context; ``None`` on any failure."""
        try:
            return self.read_file(path)["content"]
        except (GitHubError, requests.RequestException) as exc:
            LOG.debug("context_read_failed", extra={"path": path, "err": str(exc)})
            return None

    def write_file(
        self,
        path: str,
        content: str,
        sha: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "message": message or f"Update {path} via AI assistant",
            "content": encode_content(content),
        }
        if sha:
            body["sha"] = sha
        resp = self._request("PUT", f"contents/{path}", "write", json=body)
        if not resp.ok:
            LOG.warning("github_write_rejected", extra={"path": path, "status": resp.status_code})
            raise GitHubError(resp.status_code, f"GitHub write error: {resp.status_code} - {resp.text}")
        return resp.json()

    def fetch_tree(self, branch: str = "main") -> List[str]:
        """Every blob path on ``branch``; empty when the tree cannot be read."""
        try:
            resp = self._request("GET", f"git/trees/{branch}", "tree", params={"recursive": "1"})
        except requests.RequestException as exc:
            LOG.warning("github_tree_failed", extra={"err": str(exc)})
            return []
        if not resp.ok:
            return []
        tree = resp.json().get("tree") or []
        return [item["path"] for item in tree if item.get("type") == "blob" and item.get("path")]
