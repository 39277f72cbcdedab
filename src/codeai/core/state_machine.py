from __future__ import annotations

from typing import Dict, List, Optional

IDLE = "idle"
UPLOADING_ATTACHMENTS = "uploading_attachments"
SENDING = "sending"
AWAITING_RESPONSE = "awaiting_response"
APPLYING_CHANGES = "applying_changes"
DONE = "done"

# Turn phase transitions; the first entry is the happy-path successor.
PHASE_TRANSITIONS: Dict[str, List[str]] = {
    IDLE: [SENDING, UPLOADING_ATTACHMENTS],
    UPLOADING_ATTACHMENTS: [SENDING, IDLE],
    SENDING: [AWAITING_RESPONSE, IDLE],
    AWAITING_RESPONSE: [APPLYING_CHANGES, IDLE],
    APPLYING_CHANGES: [DONE, IDLE],
    DONE: [IDLE],
}

# Progress milestone reached on entering each phase.
PHASE_PROGRESS: Dict[str, float] = {
    IDLE: 0.0,
    UPLOADING_ATTACHMENTS: 5.0,
    SENDING: 15.0,
    AWAITING_RESPONSE: 30.0,
    APPLYING_CHANGES: 60.0,
    DONE: 100.0,
}

# File writes fill the band between these two values.
APPLY_PROGRESS_START = 60.0
APPLY_PROGRESS_END = 95.0

TERMINAL_PHASES = frozenset({DONE})


class InvalidTransition(ValueError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid phase transition {current} -> {target}")
        self.current = current
        self.target = target


def next_phase(current: str) -> Optional[str]:
    options = PHASE_TRANSITIONS.get(current, [])
    return options[0] if options else None


def is_valid_transition(current: str, target: str) -> bool:
    return target in PHASE_TRANSITIONS.get(current, [])


def apply_progress(completed: int, total: int) -> float:
    """Map ``completed`` of ``total`` file writes into the apply band."""
    if total <= 0:
        return APPLY_PROGRESS_END
    fraction = min(max(completed, 0), total) / total
    return APPLY_PROGRESS_START + fraction * (APPLY_PROGRESS_END - APPLY_PROGRESS_START)
