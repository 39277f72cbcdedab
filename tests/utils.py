from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional, Set, Tuple

from src.codeai.domain.edit_models import RemoteFileHandle, WriteResult


def sse_line(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n"


def sse_body(*contents: str, done: bool = True) -> bytes:
    text = "".join(sse_line(c) for c in contents)
    if done:
        text += "data: [DONE]\n"
    return text.encode("utf-8")


async def no_sleep(_seconds: float) -> None:
    return None


class InMemoryFileStore:
    """Remote file store with optimistic concurrency on a per-file SHA."""

    def __init__(self, files: Optional[Dict[str, Tuple[str, str]]] = None) -> None:
        # path -> (sha, content)
        self.files: Dict[str, Tuple[str, str]] = dict(files or {})
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.always_fail: Set[str] = set()
        self.fail_next_writes: Dict[str, int] = {}
        self.external_bumps: Dict[str, int] = {}
        self._counter = 0

    def _next_sha(self) -> str:
        self._counter += 1
        return f"sha{self._counter}"

    async def read_file(self, path: str) -> Optional[RemoteFileHandle]:
        self.calls.append(("read", path, None))
        if path not in self.files:
            return None
        sha, content = self.files[path]
        return RemoteFileHandle(path=path, sha=sha, content=content)

    async def write_file(self, path, content, sha=None, commit_message=None) -> WriteResult:
        self.calls.append(("write", path, sha))
        if path in self.always_fail:
            return WriteResult(success=False, status_code=500, message="boom")
        if self.fail_next_writes.get(path):
            self.fail_next_writes[path] -= 1
            return WriteResult(success=False, status_code=502, message="flaky")
        if self.external_bumps.get(path):
            # Someone else pushed between our read and our write.
            self.external_bumps[path] -= 1
            _, existing = self.files[path]
            self.files[path] = (self._next_sha(), existing)
        current = self.files.get(path)
        if current is not None and current[0] != sha:
            return WriteResult(success=False, status_code=409, message="sha mismatch")
        if current is None and sha is not None:
            return WriteResult(success=False, status_code=422, message="sha for missing file")
        new_sha = self._next_sha()
        self.files[path] = (new_sha, content)
        return WriteResult(
            success=True,
            commit={"sha": new_sha, "html_url": f"https://github.com/octo/site/commit/{new_sha}"},
        )


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, payload: Any = None, chunks: Optional[List[bytes]] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self._chunks = chunks or []
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        if self._payload is not None:
            return json.dumps(self._payload)
        return b"".join(self._chunks).decode("utf-8")

    def json(self) -> Any:
        return self._payload

    def iter_content(self, chunk_size=None):
        yield from self._chunks

    def close(self) -> None:
        self.closed = True


class FakeGitHubSession:
    """Answers the GitHub contents and trees endpoints from memory."""

    def __init__(self, files: Optional[Dict[str, Tuple[str, str]]] = None) -> None:
        self.files: Dict[str, Tuple[str, str]] = dict(files or {})
        self.requests: List[Tuple[str, str, Any]] = []
        self._commits = 0

    def request(self, method, url, headers=None, timeout=None, json=None, params=None):
        self.requests.append((method, url, json))
        suffix = url.split("/repos/octo/site/", 1)[1]
        if suffix.startswith("git/trees/"):
            return FakeResponse(200, {"tree": [{"path": p, "type": "blob"} for p in sorted(self.files)]})
        path = suffix[len("contents/"):]
        if method == "PUT":
            return self._put(path, json)
        if path in self.files:
            sha, content = self.files[path]
            # GitHub wraps base64 bodies at 60 columns
            encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
            wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60))
            return FakeResponse(200, {"content": wrapped, "sha": sha, "path": path, "type": "file"})
        prefix = f"{path}/" if path else ""
        children = sorted({p[len(prefix):].split("/")[0] for p in self.files if p.startswith(prefix)})
        if not children:
            return FakeResponse(404, {"message": "Not Found"})
        listing = []
        for name in children:
            full = prefix + name
            listing.append({"name": name, "path": full, "type": "file" if full in self.files else "dir"})
        return FakeResponse(200, listing)

    def _put(self, path, body):
        current = self.files.get(path)
        if current is not None and current[0] != body.get("sha"):
            return FakeResponse(409, {"message": f"{path} does not match {body.get('sha')}"})
        self._commits += 1
        new_sha = f"blob{self._commits}"
        self.files[path] = (new_sha, base64.b64decode(body["content"]).decode("utf-8"))
        commit = {"sha": f"c{self._commits}", "html_url": f"https://github.com/octo/site/commit/c{self._commits}"}
        return FakeResponse(200 if current else 201, {"content": {"path": path, "sha": new_sha}, "commit": commit})


class FakeGatewaySession:
    def __init__(self, status_code: int = 200, chunks: Optional[List[bytes]] = None) -> None:
        self.status_code = status_code
        self.chunks = chunks or []
        self.payloads: List[Dict[str, Any]] = []
        self.responses: List[FakeResponse] = []

    def post(self, url, json=None, headers=None, timeout=None, stream=False):
        self.payloads.append(json)
        if self.status_code >= 400:
            resp = FakeResponse(self.status_code, {"error": {"message": "upstream"}})
        else:
            resp = FakeResponse(200, chunks=list(self.chunks))
        self.responses.append(resp)
        return resp
