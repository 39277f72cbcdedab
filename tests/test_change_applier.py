import asyncio

from src.codeai.domain.edit_models import FileEdit, FileEditBatch
from src.codeai.services.change_applier import ChangeApplier
from src.codeai.services.retry import RetryPolicy
from src.codeai.services.session_store import FILES_UPDATED, PREVIEW_RELOAD, SessionStore

from .utils import InMemoryFileStore, no_sleep


def _batch(*edits):
    return FileEditBatch(files=[FileEdit(path=p, content=c) for p, c in edits])


def _applier(store, repo, session=None):
    session = session or SessionStore()
    policy = RetryPolicy(max_attempts=3, backoff_seconds=1.0, sleep=no_sleep)
    return ChangeApplier(store, session, repo, policy=policy, preview_reload_delay=0.0), session


def test_readme_update_end_to_end(repo):
    store = InMemoryFileStore({"README.md": ("abc123", "# Old")})
    applier, session = _applier(store, repo)
    refreshed = []
    session.subscribe(FILES_UPDATED, lambda _: refreshed.append(True))

    async def run():
        result = await applier.apply(FileEditBatch(files=[FileEdit(path="README.md", content="# Hi", action="update")]))
        applier.finalize("Updating the readme.", result)
        return result

    result = asyncio.run(run())
    assert (result.success_count, result.error_count) == (1, 0)
    assert store.calls[:2] == [("read", "README.md", None), ("write", "README.md", "abc123")]
    assert store.files["README.md"][1] == "# Hi"
    assert result.commit_references == ["https://github.com/octo/site/commit/sha1"]
    assert refreshed == [True]
    assert session.file_ops[0].status == "done"
    assert session.selected_file == {"path": "README.md", "content": "# Hi"}
    assert session.messages[-1].content.startswith("Updating the readme.\n\n✅ 1 file(s) committed")


def test_new_file_is_written_without_sha(repo):
    store = InMemoryFileStore()
    applier, _ = _applier(store, repo)
    result = asyncio.run(applier.apply(_batch(("src/new.ts", "export const x = 1;"))))
    assert result.success_count == 1
    assert ("write", "src/new.ts", None) in store.calls


def test_same_path_twice_uses_token_from_first_write(repo):
    store = InMemoryFileStore({"a.txt": ("sha0", "v0")})
    applier, _ = _applier(store, repo)
    result = asyncio.run(applier.apply(_batch(("a.txt", "v1"), ("a.txt", "v2"))))
    assert result.success_count == 2
    writes = [c for c in store.calls if c[0] == "write"]
    assert writes == [("write", "a.txt", "sha0"), ("write", "a.txt", "sha1")]
    assert store.files["a.txt"] == ("sha2", "v2")


def test_stale_token_is_refetched_before_retry(repo):
    store = InMemoryFileStore({"app.css": ("sha0", "old")})
    store.external_bumps["app.css"] = 1
    applier, _ = _applier(store, repo)
    result = asyncio.run(applier.apply(_batch(("app.css", "new"))))
    assert result.success_count == 1
    assert store.calls == [
        ("read", "app.css", None),
        ("write", "app.css", "sha0"),
        ("read", "app.css", None),
        ("write", "app.css", "sha1"),
    ]


def test_partial_batch_failure_continues(repo):
    store = InMemoryFileStore()
    store.always_fail.add("b.txt")
    applier, session = _applier(store, repo)

    async def run():
        result = await applier.apply(_batch(("a.txt", "1"), ("b.txt", "2"), ("c.txt", "3")))
        applier.finalize("Three files.", result)
        return result

    result = asyncio.run(run())
    assert (result.success_count, result.error_count) == (2, 1)
    assert [op.status for op in session.file_ops] == ["done", "error", "done"]
    assert len([c for c in store.calls if c == ("write", "b.txt", None)]) == 3
    assert session.progress == 95.0
    summary = session.messages[-1].content
    assert "✅ 2 file(s)" in summary and "❌ 1 file(s) failed" in summary
    assert session.selected_file["path"] == "c.txt"


def test_flaky_write_recovers_within_attempts(repo):
    store = InMemoryFileStore()
    store.fail_next_writes["x.md"] = 2
    applier, session = _applier(store, repo)
    result = asyncio.run(applier.apply(_batch(("x.md", "# x"))))
    assert result.success_count == 1
    assert session.file_ops[0].status == "done"


def test_read_errors_are_treated_as_missing_token(repo):
    class BrokenReads(InMemoryFileStore):
        async def read_file(self, path):
            raise ConnectionError("offline")

    store = BrokenReads()
    applier, _ = _applier(store, repo)
    result = asyncio.run(applier.apply(_batch(("a.txt", "1"))))
    assert result.success_count == 1


def test_commit_fallback_url_when_store_returns_no_commit(repo):
    class NoCommit(InMemoryFileStore):
        async def write_file(self, path, content, sha=None, commit_message=None):
            result = await super().write_file(path, content, sha, commit_message)
            return result.model_copy(update={"commit": None})

    applier, _ = _applier(NoCommit(), repo)
    result = asyncio.run(applier.apply(_batch(("a.txt", "1"))))
    assert result.commit_references == ["https://github.com/octo/site/commits/main"]


def test_all_failed_batch_emits_no_refresh(repo):
    store = InMemoryFileStore()
    store.always_fail.add("a.txt")
    applier, session = _applier(store, repo)
    refreshed = []
    session.subscribe(FILES_UPDATED, refreshed.append)

    async def run():
        result = await applier.apply(_batch(("a.txt", "1")))
        applier.finalize("text", result)

    asyncio.run(run())
    assert refreshed == []
    assert session.messages[-1].content == "text\n\n❌ 1 file(s) failed to write."


def test_preview_reload_is_scheduled_when_preview_is_set(repo):
    store = InMemoryFileStore()
    applier, session = _applier(store, repo)
    session.set_preview_url("https://octo.github.io/site")
    reloads = []
    session.subscribe(PREVIEW_RELOAD, reloads.append)

    async def run():
        result = await applier.apply(_batch(("index.html", "<p>x</p>")))
        applier.finalize("ok", result)
        await asyncio.sleep(0.01)

    asyncio.run(run())
    assert reloads == ["https://octo.github.io/site"]
