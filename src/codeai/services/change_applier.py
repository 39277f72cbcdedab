"""Apply a batch of file edits to the remote store, one file at a time.

Writes are optimistic-concurrency updates keyed by the file's current SHA.
The SHA is fetched right before each write attempt because an earlier edit
in the same batch, a failed attempt, or an outside push may have moved it.
There is no batch rollback: a partially failed batch leaves the repository
in a mixed state, reported per file through the FileOp list.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from ..core import state_machine as sm
from ..domain.edit_models import ApplyResult, FileEditBatch, RemoteFileHandle, RepoConfig, WriteResult
from .messages import message
from .retry import RetryPolicy, write_policy
from .sanitizer import sanitize
from .session_store import SessionStore

LOG = logging.getLogger("codeai.apply")


class RemoteFileStore(Protocol):
    async def read_file(self, path: str) -> Optional[RemoteFileHandle]: ...

    async def write_file(
        self,
        path: str,
        content: str,
        sha: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> WriteResult: ...


class ChangeApplier:
    def __init__(
        self,
        store: RemoteFileStore,
        session: SessionStore,
        repo: RepoConfig,
        *,
        policy: Optional[RetryPolicy] = None,
        locale: str = "en",
        preview_reload_delay: float = 3.0,
    ) -> None:
        self.store = store
        self.session = session
        self.repo = repo
        self.policy = policy or write_policy()
        self.locale = locale
        self.preview_reload_delay = preview_reload_delay

    async def _fetch_sha(self, path: str) -> Optional[str]:
        try:
            handle = await self.store.read_file(path)
        except Exception as exc:
            LOG.warning("sha_fetch_failed", extra={"path": path, "err": str(exc)})
            return None
        if handle is None:
            LOG.info("sha_absent_new_file", extra={"path": path})
            return None
        return handle.sha

    async def _write_one(self, path: str, content: str) -> Optional[WriteResult]:
        sha = await self._fetch_sha(path)

        async def attempt(n: int) -> WriteResult:
            LOG.info("write_attempt", extra={"path": path, "attempt": n, "has_sha": bool(sha)})
            return await self.store.write_file(path, content, sha)

        async def refresh_sha(_: int) -> None:
            nonlocal sha
            sha = await self._fetch_sha(path)

        outcome = await self.policy.run(
            attempt,
            succeeded=lambda result: bool(result and result.success),
            before_retry=refresh_sha,
            label=f"write {path}",
        )
        return outcome.value if outcome.succeeded else None

    async def apply(self, batch: FileEditBatch) -> ApplyResult:
        edits = batch.files
        total = len(edits)
        self.session.start_file_ops([edit.path for edit in edits])
        result = ApplyResult()

        for index, edit in enumerate(edits):
            self.session.set_progress(
                sm.apply_progress(index, total), message("label_writing", self.locale, path=edit.path)
            )
            self.session.set_file_status(index, "writing")
            try:
                written = await self._write_one(edit.path, edit.content)
            except Exception:
                LOG.exception("write_unexpected_error", extra={"path": edit.path})
                written = None

            if written is None:
                result.error_count += 1
                self.session.set_file_status(index, "error")
                LOG.error("write_failed", extra={"path": edit.path})
            else:
                result.success_count += 1
                result.last_success = edit
                commit_url = (written.commit or {}).get("html_url") or self.repo.commits_url
                result.commit_references.append(commit_url)
                self.session.set_file_status(index, "done")
                LOG.info("write_done", extra={"path": edit.path, "commit": commit_url})
            self.session.set_progress(sm.apply_progress(index + 1, total))

        LOG.info("apply_finished", extra={"success": result.success_count, "errors": result.error_count})
        return result

    def status_message(self, result: ApplyResult) -> str:
        parts = []
        if result.success_count > 0:
            parts.append(message("commit_success", self.locale, count=result.success_count))
            parts.append(message("commit_link", self.locale, url=self.repo.commits_url))
            parts.append(message("pages_note", self.locale))
        if result.error_count > 0:
            parts.append(message("commit_errors", self.locale, count=result.error_count))
        return "".join(f"\n\n{part}" for part in parts)

    def finalize(self, transcript: str, result: ApplyResult) -> None:
        """Publish the batch summary and tell collaborators to refresh."""
        summary = self.status_message(result)
        if summary:
            self.session.update_last_assistant_message(sanitize(transcript) + summary)

        if result.last_success is not None:
            self.session.select_file(result.last_success.path, result.last_success.content)

        if result.success_count > 0:
            self.session.notify_files_updated()
            if self.session.preview_url:
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    self.session.reload_preview()
                else:
                    loop.call_later(self.preview_reload_delay, self.session.reload_preview)
