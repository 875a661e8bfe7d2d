"""
core/lifecycle.py

Thread lifecycle state machine and handling-path routing.

States: open (initial), awaiting_confirmation, resolved and cancelled (terminal).

    open ──────────────► awaiting_confirmation ──► resolved
      │                          │
      ├──► resolved              └──► cancelled
      └──► cancelled

Re-asserting the current non-terminal status is allowed; it happens when a
note-producing flow records another action on a thread that is already awaiting
confirmation. No edge leaves a terminal state.
"""

from typing import Dict, FrozenSet

from shared.models import HandlingPath, TERMINAL_STATUSES, ThreadCategory, ThreadStatus

class ThreadRouterError(Exception):
    """Base class for errors raised by the thread router."""

class InvalidTransitionError(ThreadRouterError):
    """
    Raised when a status change would take a thread along an edge the state machine
    does not have, for example cancelling a thread that is already resolved.
    """

    def __init__(self, thread_id: str, current: ThreadStatus, target: ThreadStatus):
        self.thread_id = thread_id
        self.current = current
        self.target = target
        super().__init__(
            f"Thread {thread_id} cannot move from '{current.value}' to '{target.value}'"
        )

ALLOWED_TRANSITIONS: Dict[ThreadStatus, FrozenSet[ThreadStatus]] = {
    ThreadStatus.OPEN: frozenset({
        ThreadStatus.OPEN,
        ThreadStatus.AWAITING_CONFIRMATION,
        ThreadStatus.RESOLVED,
        ThreadStatus.CANCELLED,
    }),
    ThreadStatus.AWAITING_CONFIRMATION: frozenset({
        ThreadStatus.AWAITING_CONFIRMATION,
        ThreadStatus.RESOLVED,
        ThreadStatus.CANCELLED,
    }),
    ThreadStatus.RESOLVED: frozenset(),
    ThreadStatus.CANCELLED: frozenset(),
}

NOTE_CATEGORIES = frozenset({ThreadCategory.REQUEST, ThreadCategory.COMPLAINT, ThreadCategory.UPSELL})

def can_transition(current: ThreadStatus, target: ThreadStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]

def ensure_transition(thread_id: str, current: ThreadStatus, target: ThreadStatus) -> None:
    """Raise `InvalidTransitionError` unless `current -> target` is an edge of the state machine."""
    if not can_transition(current, target):
        raise InvalidTransitionError(thread_id, current, target)

def is_active_status(status: ThreadStatus) -> bool:
    """The activity flag that must accompany `status`."""
    return status not in TERMINAL_STATUSES

def handling_path_for(category: ThreadCategory) -> HandlingPath:
    """
    Pick the handling path for a thread category.

    Requests, complaints and upsells may need staff action, so they go to the
    note-producing path; FAQ and general threads are answered directly.
    """
    if category in NOTE_CATEGORIES:
        return HandlingPath.NOTE
    return HandlingPath.ANSWER
