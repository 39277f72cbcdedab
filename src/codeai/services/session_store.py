"""Single owner of the assistant session's mutable state.

Components never touch each other's state: they call the update methods
here, and observers (a UI, a test) subscribe to the signals it emits.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..core import state_machine as sm
from ..domain.edit_models import FILE_OP_TRANSITIONS, ChatMessage, FileOp
from .sanitizer import sanitize

LOG = logging.getLogger("codeai.session")

MESSAGE_UPDATED = "message-updated"
PROGRESS_CHANGED = "progress"
FILE_OPS_CHANGED = "file-ops"
FILES_UPDATED = "files-updated"
PREVIEW_RELOAD = "preview-reload"
FILE_SELECTED = "file-selected"

Listener = Callable[[Any], None]


class SessionStore:
    def __init__(self) -> None:
        self.messages: List[ChatMessage] = []
        self.transcript = ""
        self.file_ops: List[FileOp] = []
        self.phase = sm.IDLE
        self.progress = 0.0
        self.label = ""
        self.busy = False
        self.selected_file: Optional[Dict[str, str]] = None
        self.preview_url = ""
        self._listeners: Dict[str, List[Listener]] = {}
        self._reset_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception:
                LOG.exception("listener_failed", extra={"event": event})

    # ------------------------------------------------------------------
    # Messages and transcript
    # ------------------------------------------------------------------
    def add_message(self, role: str, content: str) -> ChatMessage:
        msg = ChatMessage(message_id=str(uuid.uuid4()), role=role, content=content)
        self.messages.append(msg)
        self._emit(MESSAGE_UPDATED, msg)
        return msg

    def update_last_assistant_message(self, content: str) -> ChatMessage:
        if self.messages and self.messages[-1].role == "assistant":
            msg = self.messages[-1].model_copy(update={"content": content})
            self.messages[-1] = msg
            self._emit(MESSAGE_UPDATED, msg)
            return msg
        return self.add_message("assistant", content)

    def history(self) -> List[Dict[str, Any]]:
        return [{"role": m.role, "content": m.content} for m in self.messages]

    def begin_transcript(self) -> None:
        self.transcript = ""

    def append_transcript(self, delta: str) -> str:
        """Append a stream delta and show the sanitized cumulative text."""
        self.transcript += delta
        self.update_last_assistant_message(sanitize(self.transcript))
        return self.transcript

    # ------------------------------------------------------------------
    # Turn lifecycle and progress
    # ------------------------------------------------------------------
    def begin_turn(self, label: str = "") -> bool:
        if self.busy:
            LOG.info("turn_rejected_busy")
            return False
        self._cancel_reset()
        self.busy = True
        self.file_ops = []
        self.phase = sm.IDLE
        self.set_progress(0.0, label)
        self._emit(FILE_OPS_CHANGED, [])
        return True

    def end_turn(self) -> None:
        self.busy = False

    def transition(self, phase: str, label: Optional[str] = None) -> None:
        if not sm.is_valid_transition(self.phase, phase):
            raise sm.InvalidTransition(self.phase, phase)
        LOG.debug("phase_transition", extra={"from_phase": self.phase, "to_phase": phase})
        self.phase = phase
        self.set_progress(sm.PHASE_PROGRESS[phase], label)

    def fail_to_idle(self) -> None:
        if self.phase != sm.IDLE:
            self.transition(sm.IDLE, "")
        else:
            self.set_progress(0.0, "")

    def set_progress(self, value: float, label: Optional[str] = None) -> None:
        self.progress = min(max(float(value), 0.0), 100.0)
        if label is not None:
            self.label = label
        self._emit(PROGRESS_CHANGED, {"phase": self.phase, "progress": self.progress, "label": self.label})

    def schedule_reset(self, delay: float) -> None:
        """Return to the resting state after ``delay`` seconds."""
        self._cancel_reset()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.reset()
            return
        self._reset_handle = loop.call_later(delay, self.reset)

    def reset(self) -> None:
        self._reset_handle = None
        if self.phase in sm.TERMINAL_PHASES:
            self.phase = sm.IDLE
        self.file_ops = []
        self.set_progress(0.0)
        self._emit(FILE_OPS_CHANGED, [])

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    # ------------------------------------------------------------------
    # Per-file operations
    # ------------------------------------------------------------------
    def start_file_ops(self, paths: List[str]) -> List[FileOp]:
        self.file_ops = [FileOp(path=p) for p in paths]
        self._emit(FILE_OPS_CHANGED, list(self.file_ops))
        return self.file_ops

    def set_file_status(self, index: int, status: str) -> FileOp:
        current = self.file_ops[index]
        if status not in FILE_OP_TRANSITIONS.get(current.status, []):
            raise ValueError(f"Invalid file status transition {current.status} -> {status} for {current.path}")
        updated = current.model_copy(update={"status": status})
        self.file_ops[index] = updated
        self._emit(FILE_OPS_CHANGED, list(self.file_ops))
        return updated

    # ------------------------------------------------------------------
    # Collaborator refresh signals
    # ------------------------------------------------------------------
    def select_file(self, path: str, content: str) -> None:
        self.selected_file = {"path": path, "content": content}
        self._emit(FILE_SELECTED, self.selected_file)

    def set_preview_url(self, url: str) -> None:
        self.preview_url = url

    def notify_files_updated(self) -> None:
        self._emit(FILES_UPDATED)

    def reload_preview(self) -> None:
        if self.preview_url:
            self._emit(PREVIEW_RELOAD, self.preview_url)
