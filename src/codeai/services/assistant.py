"""One chat turn, end to end.

upload attachments -> send the conversation -> stream the reply ->
extract the edit payload -> apply it -> publish the summary.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..config import Settings, load_settings
from ..core import state_machine as sm
from ..domain.edit_models import Attachment, RepoConfig
from .attachments import AttachmentUploader, BucketStorage
from .change_applier import ChangeApplier
from .function_client import ChatRequestError, FunctionClient
from .messages import message
from .payload_extractor import ExtractionOutcome, extract
from .retry import RetryPolicy
from .sanitizer import sanitize
from .session_store import SessionStore
from .streaming import read_deltas

LOG = logging.getLogger("codeai.assistant")

# Below this length a reply without a payload is treated as small talk.
NO_PAYLOAD_NOTICE_MIN_CHARS = 50

_OUTCOME_MESSAGE_KEYS = {
    ExtractionOutcome.TRUNCATED: "truncated",
    ExtractionOutcome.INVALID: "invalid",
    ExtractionOutcome.EMPTY: "empty_files",
    ExtractionOutcome.NO_VALID_FILES: "no_valid_files",
}


def build_user_content(text: str, image_urls: Sequence[str]) -> Any:
    """Message content for the model: plain text, or multimodal parts."""
    if not image_urls:
        return text
    parts: List[Dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    for url in image_urls:
        parts.append({"type": "image_url", "image_url": {"url": url}})
    return parts


def build_display_content(text: str, image_urls: Sequence[str]) -> str:
    return text + "".join(f"\n![image]({url})" for url in image_urls)


class AssistantSession:
    def __init__(
        self,
        client: FunctionClient,
        *,
        uploader: Optional[AttachmentUploader] = None,
        store: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.client = client
        self.uploader = uploader
        self.store = store or SessionStore()
        self.locale = self.settings.locale
        self.applier = ChangeApplier(
            client,
            self.store,
            client.repo,
            policy=RetryPolicy(
                max_attempts=self.settings.write_attempts,
                backoff_seconds=self.settings.retry_backoff_seconds,
            ),
            locale=self.locale,
            preview_reload_delay=self.settings.preview_reload_delay_seconds,
        )

    @classmethod
    def from_settings(cls, repo: RepoConfig, settings: Optional[Settings] = None) -> "AssistantSession":
        settings = settings or load_settings()
        client = FunctionClient(
            settings.function_url, settings.function_key, repo, timeout=settings.request_timeout
        )
        uploader = None
        if settings.storage_url:
            uploader = AttachmentUploader(
                BucketStorage(settings.storage_url, settings.storage_key, settings.storage_bucket),
                RetryPolicy(
                    max_attempts=settings.upload_retries + 1,
                    backoff_seconds=settings.retry_backoff_seconds,
                ),
            )
        return cls(client, uploader=uploader, settings=settings)

    def _msg(self, key: str, **params: object) -> str:
        return message(key, self.locale, **params)

    async def send(self, text: str, attachments: Sequence[Attachment] = ()) -> bool:
        """Run one turn. Returns False when the turn was not started."""
        text = (text or "").strip()
        images = [a for a in attachments if a.is_image]
        if not text and not images:
            return False
        if not self.store.begin_turn(self._msg("label_processing")):
            return False
        try:
            await self._run_turn(text, images)
        except Exception:
            LOG.exception("turn_failed_unexpectedly")
            self.store.add_message("assistant", self._msg("unexpected_error"))
            self.store.fail_to_idle()
        finally:
            self.store.end_turn()
            self.store.schedule_reset(self.settings.reset_delay_seconds)
        return True

    async def _upload(self, images: Sequence[Attachment]) -> Optional[List[str]]:
        self.store.transition(sm.UPLOADING_ATTACHMENTS, self._msg("label_uploading"))
        if self.uploader is None:
            LOG.error("attachments_without_storage", extra={"count": len(images)})
            report_urls: List[str] = []
            failed = len(images)
        else:
            report = await self.uploader.upload_all(images)
            report_urls, failed = report.urls, report.failed
        if not report_urls:
            self.store.add_message("assistant", self._msg("upload_failed"))
            self.store.fail_to_idle()
            return None
        if failed:
            self.store.add_message("assistant", self._msg("upload_partial", count=failed))
        return report_urls

    async def _run_turn(self, text: str, images: Sequence[Attachment]) -> None:
        history = self.store.history()
        image_urls: List[str] = []
        if images:
            uploaded = await self._upload(images)
            if uploaded is None:
                return
            image_urls = uploaded

        self.store.add_message("user", build_display_content(text, image_urls))
        api_messages = history + [{"role": "user", "content": build_user_content(text, image_urls)}]

        self.store.transition(sm.SENDING, self._msg("label_connecting"))
        self.store.begin_transcript()
        try:
            async with self.client.chat(api_messages) as stream:
                self.store.transition(sm.AWAITING_RESPONSE, self._msg("label_receiving"))
                async for delta in read_deltas(stream.chunks()):
                    self.store.append_transcript(delta)
        except ChatRequestError as exc:
            error = exc.error or self._msg("request_failed_default")
            self.store.add_message("assistant", self._msg("request_failed", error=error))
            self.store.fail_to_idle()
            return

        self.store.transition(sm.APPLYING_CHANGES, self._msg("label_applying"))
        await self.apply_file_changes(self.store.transcript)
        self.store.transition(sm.DONE, "")

    async def apply_file_changes(self, transcript: str) -> None:
        result = extract(transcript)
        if result.outcome is ExtractionOutcome.NO_PAYLOAD:
            if len(transcript) > NO_PAYLOAD_NOTICE_MIN_CHARS:
                self._append_notice("no_payload", transcript)
            return
        if not result.ok or result.batch is None:
            self._append_notice(_OUTCOME_MESSAGE_KEYS[result.outcome], transcript)
            return

        applied = await self.applier.apply(result.batch)
        self.applier.finalize(transcript, applied)

    def _append_notice(self, key: str, transcript: str) -> None:
        self.store.update_last_assistant_message(sanitize(transcript) + "\n\n" + self._msg(key))
