"""Session lifecycle state machine.

Status only ever moves forward:

    RUNNING ──┬──> COMPLETE
              │
              └──> ERROR

COMPLETE and ERROR are terminal. Whichever observer (result record,
process exit, kill, timeout) reaches a session first performs the
transition; later observers see a terminal state and do nothing.
"""
from __future__ import annotations

from .models import SessionStatus

VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.RUNNING: {
        SessionStatus.COMPLETE,
        SessionStatus.ERROR,
    },
    SessionStatus.COMPLETE: set(),
    SessionStatus.ERROR: set(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())

