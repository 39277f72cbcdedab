import asyncio

import pytest

from src.codeai.core import state_machine as sm
from src.codeai.services.session_store import (
    FILE_OPS_CHANGED,
    MESSAGE_UPDATED,
    SessionStore,
)


def test_phase_table_happy_path():
    phase = sm.IDLE
    seen = [phase]
    for _ in range(5):
        phase = sm.next_phase(phase)
        seen.append(phase)
    assert seen == [sm.IDLE, sm.SENDING, sm.AWAITING_RESPONSE, sm.APPLYING_CHANGES, sm.DONE, sm.IDLE]
    assert sm.is_valid_transition(sm.IDLE, sm.UPLOADING_ATTACHMENTS)
    assert not sm.is_valid_transition(sm.DONE, sm.SENDING)


def test_apply_progress_band():
    assert sm.apply_progress(0, 4) == 60.0
    assert sm.apply_progress(2, 4) == 77.5
    assert sm.apply_progress(4, 4) == 95.0
    assert sm.apply_progress(0, 0) == 95.0


def test_transitions_set_milestones_and_reject_skips():
    store = SessionStore()
    assert store.begin_turn("Processing...")
    store.transition(sm.UPLOADING_ATTACHMENTS, "Uploading")
    assert store.progress == 5.0 and store.label == "Uploading"
    store.transition(sm.SENDING)
    assert store.progress == 15.0
    with pytest.raises(sm.InvalidTransition):
        store.transition(sm.DONE)


def test_busy_store_rejects_second_turn():
    store = SessionStore()
    assert store.begin_turn()
    assert not store.begin_turn()
    store.end_turn()
    assert store.begin_turn()


def test_update_last_assistant_message_replaces_or_appends():
    store = SessionStore()
    events = []
    store.subscribe(MESSAGE_UPDATED, events.append)
    store.add_message("user", "hi")
    store.update_last_assistant_message("a")
    store.update_last_assistant_message("ab")
    assert [(m.role, m.content) for m in store.messages] == [("user", "hi"), ("assistant", "ab")]
    assert len(events) == 3


def test_append_transcript_shows_sanitized_text():
    store = SessionStore()
    store.begin_transcript()
    store.append_transcript("Updating.\n\n```json\n")
    store.append_transcript('{"files":[{"path":"a","content":"b"}]}\n```')
    assert store.transcript.endswith("```")
    assert store.messages[-1].content == "Updating."


def test_file_ops_are_monotonic():
    store = SessionStore()
    store.start_file_ops(["a", "b"])
    store.set_file_status(0, "writing")
    store.set_file_status(0, "done")
    with pytest.raises(ValueError):
        store.set_file_status(0, "writing")
    with pytest.raises(ValueError):
        store.set_file_status(1, "done")
    assert [op.status for op in store.file_ops] == ["done", "pending"]


def test_listener_errors_do_not_break_updates():
    store = SessionStore()

    def broken(_payload):
        raise RuntimeError("ui gone")

    store.subscribe(FILE_OPS_CHANGED, broken)
    store.start_file_ops(["a"])
    assert store.file_ops[0].status == "pending"


def test_unsubscribe():
    store = SessionStore()
    events = []
    unsubscribe = store.subscribe(MESSAGE_UPDATED, events.append)
    unsubscribe()
    store.add_message("user", "x")
    assert events == []


def test_terminal_state_resets_after_delay():
    store = SessionStore()

    async def run():
        store.begin_turn()
        for phase in (sm.SENDING, sm.AWAITING_RESPONSE, sm.APPLYING_CHANGES, sm.DONE):
            store.transition(phase)
        store.start_file_ops(["a"])
        store.end_turn()
        store.schedule_reset(0.01)
        assert store.progress == 100.0
        await asyncio.sleep(0.05)

    asyncio.run(run())
    assert store.phase == sm.IDLE
    assert store.progress == 0.0
    assert store.file_ops == []


def test_new_turn_cancels_pending_reset():
    store = SessionStore()

    async def run():
        store.begin_turn()
        store.end_turn()
        store.schedule_reset(0.01)
        store.begin_turn()
        store.transition(sm.SENDING)
        await asyncio.sleep(0.05)

    asyncio.run(run())
    assert store.phase == sm.SENDING
    assert store.progress == 15.0
