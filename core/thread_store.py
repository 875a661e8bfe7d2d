"""
core/thread_store.py

In-process owner of every conversation thread, keyed by session code.

The store is the only component holding mutable `Thread` instances. Every read path
and every mutation returns a deep-copied snapshot, so callers can never change a
thread behind the store's back.

Concurrency model:
- A registry lock guards the session map, the per-session lock table, and the
  thread-id index. It is only ever held for dictionary bookkeeping.
- One lock per session key serializes mutations of that session's threads. Mutations
  of different sessions never wait on each other.
- Eviction is single-flight and holds each session's lock only while filtering that
  session's list.

Unknown thread ids (typically a thread evicted while a turn was in flight) are logged
and ignored: the next unmatched message simply starts a fresh thread.
"""

import copy
import threading
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional

from config.logging_config import get_logger
from core.lifecycle import ensure_transition, is_active_status
from monitoring.metrics import (
    ACTIVE_THREADS,
    STATUS_TRANSITIONS,
    THREADS_CREATED,
    THREADS_EVICTED,
)
from shared.models import (
    CONTEXT_TYPES,
    MessageRole,
    Thread,
    ThreadCategory,
    ThreadContextData,
    ThreadMessage,
    ThreadStats,
    ThreadStatus,
)
from shared.utils import generate_message_id, generate_thread_id, utc_now

logger = get_logger(__name__)

class ThreadStore:
    """
    Owns all threads of all sessions.

    Sessions are implicit: a session exists while it holds at least one thread. It
    appears with its first thread and disappears when eviction empties it.

    Args:
        clock (Callable[[], datetime]): Source of timezone-aware "now"; injectable for tests.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._sessions: Dict[str, List[Thread]] = {}
        self._index: Dict[str, str] = {}  # thread id -> session code
        self._session_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._evict_lock = threading.Lock()

    # --- locking helpers -----------------------------------------------------

    def _session_lock(self, session_code: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._session_locks.get(session_code)
            if lock is None:
                lock = threading.Lock()
                self._session_locks[session_code] = lock
            return lock

    @contextmanager
    def _locked_session(self, session_code: str) -> Iterator[None]:
        # Eviction may retire a session's lock while another caller waits on it;
        # re-check after acquiring and retry with the current lock.
        while True:
            lock = self._session_lock(session_code)
            with lock:
                with self._registry_lock:
                    current = self._session_locks.get(session_code)
                if current is lock:
                    yield
                    return

    def _session_of(self, thread_id: str) -> Optional[str]:
        with self._registry_lock:
            return self._index.get(thread_id)

    def _find(self, session_code: str, thread_id: str) -> Optional[Thread]:
        # Caller holds the session lock.
        for thread in self._sessions.get(session_code, ()):
            if thread.id == thread_id:
                return thread
        return None

    @contextmanager
    def _locked_thread(self, thread_id: str, operation: str) -> Iterator[Optional[Thread]]:
        session_code = self._session_of(thread_id)
        if session_code is None:
            logger.warning(
                "Thread not found for %s", operation,
                extra={'thread_id': thread_id, 'operation': operation}
            )
            yield None
            return
        with self._locked_session(session_code):
            thread = self._find(session_code, thread_id)
            if thread is None:
                logger.warning(
                    "Thread disappeared before %s", operation,
                    extra={'thread_id': thread_id, 'session_code': session_code, 'operation': operation}
                )
            yield thread

    # --- mutations -----------------------------------------------------------

    def create_thread(
        self,
        session_code: str,
        category: ThreadCategory,
        seed_context: ThreadContextData,
        initial_message: str,
    ) -> Thread:
        """
        Create an open, active thread whose first message is the guest's message.

        Args:
            session_code (str): Opaque session identifier the thread belongs to.
            category (ThreadCategory): Thread category; selects the context variant.
            seed_context (ThreadContextData): Context variant matching `category`, with
                `keywords` already extracted.
            initial_message (str): The guest message that started the thread.

        Returns:
            Thread: Snapshot of the new thread.

        Raises:
            TypeError: If `seed_context` is not the variant `category` requires.
        """
        expected = CONTEXT_TYPES[category]
        if not isinstance(seed_context, expected):
            raise TypeError(
                f"{category.value} threads need {expected.__name__}, got {type(seed_context).__name__}"
            )

        now = self._clock()
        thread = Thread(
            id=generate_thread_id(),
            session_code=session_code,
            category=category,
            context=copy.deepcopy(seed_context),
            created_at=now,
            updated_at=now,
            messages=[ThreadMessage(generate_message_id(), initial_message, MessageRole.USER, now)],
            last_user_message_normalized=initial_message.lower(),
        )

        with self._locked_session(session_code):
            with self._registry_lock:
                session_threads = self._sessions.setdefault(session_code, [])
                self._index[thread.id] = session_code
            session_threads.append(thread)
            total = len(session_threads)
            snapshot = copy.deepcopy(thread)

        THREADS_CREATED.labels(category=category.value).inc()
        logger.info(
            "Created new thread",
            extra={
                'session_code': session_code,
                'thread_id': thread.id,
                'category': category.value,
                'total_threads': total,
            }
        )
        return snapshot

    def add_message(self, thread_id: str, content: str, role: MessageRole) -> Optional[Thread]:
        """
        Append a message to a thread.

        User messages also refresh `last_user_message_normalized`. An unknown thread id
        is logged and ignored.

        Returns:
            Optional[Thread]: Snapshot after the append, or None for an unknown id.
        """
        with self._locked_thread(thread_id, 'add_message') as thread:
            if thread is None:
                return None
            now = self._clock()
            thread.messages.append(ThreadMessage(generate_message_id(), content, role, now))
            thread.updated_at = now
            if role is MessageRole.USER:
                thread.last_user_message_normalized = content.lower()
            snapshot = copy.deepcopy(thread)

        logger.debug(
            "Added message to thread",
            extra={'thread_id': thread_id, 'role': role.value, 'message_count': len(snapshot.messages)}
        )
        return snapshot

    def set_status(self, thread_id: str, status: ThreadStatus) -> Optional[Thread]:
        """
        Move a thread to a new status.

        Terminal statuses force `is_active=False`; the flag always follows the status.
        An unknown thread id is logged and ignored.

        Returns:
            Optional[Thread]: Snapshot after the change, or None for an unknown id.

        Raises:
            InvalidTransitionError: If the state machine has no such edge.
        """
        with self._locked_thread(thread_id, 'set_status') as thread:
            if thread is None:
                return None
            ensure_transition(thread_id, thread.status, status)
            previous = thread.status
            thread.status = status
            thread.is_active = is_active_status(status)
            thread.updated_at = self._clock()
            snapshot = copy.deepcopy(thread)

        STATUS_TRANSITIONS.labels(status=status.value).inc()
        logger.info(
            "Updated thread status",
            extra={
                'session_code': snapshot.session_code,
                'thread_id': thread_id,
                'previous_status': previous.value,
                'status': status.value,
                'is_active': snapshot.is_active,
            }
        )
        return snapshot

    def merge_context(self, thread_id: str, partial: Dict[str, Any]) -> Optional[Thread]:
        """
        Shallow-merge fields into a thread's context.

        Args:
            thread_id (str): Target thread.
            partial (Dict[str, Any]): Field values of the thread's context variant.

        Returns:
            Optional[Thread]: Snapshot after the merge, or None for an unknown id.

        Raises:
            ValueError: If `partial` names a field the context variant does not have.
        """
        with self._locked_thread(thread_id, 'merge_context') as thread:
            if thread is None:
                return None
            allowed = {f.name for f in fields(thread.context)}
            unknown = set(partial) - allowed
            if unknown:
                raise ValueError(
                    f"{type(thread.context).__name__} has no field(s): {', '.join(sorted(unknown))}"
                )
            update = dict(partial)
            if 'keywords' in update:
                update['keywords'] = set(update['keywords'])
            thread.context = replace(thread.context, **copy.deepcopy(update))
            thread.updated_at = self._clock()
            snapshot = copy.deepcopy(thread)

        logger.debug(
            "Updated thread context",
            extra={'thread_id': thread_id, 'context_keys': sorted(partial)}
        )
        return snapshot

    # --- reads ---------------------------------------------------------------

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        session_code = self._session_of(thread_id)
        if session_code is None:
            return None
        with self._locked_session(session_code):
            thread = self._find(session_code, thread_id)
            return copy.deepcopy(thread) if thread is not None else None

    def list_by_session(self, session_code: str) -> List[Thread]:
        """All threads of a session in creation order."""
        with self._locked_session(session_code):
            return copy.deepcopy(self._sessions.get(session_code, []))

    def list_active(self, session_code: str) -> List[Thread]:
        """Active threads of a session in creation order."""
        with self._locked_session(session_code):
            return [copy.deepcopy(t) for t in self._sessions.get(session_code, []) if t.is_active]

    def session_codes(self) -> List[str]:
        with self._registry_lock:
            return list(self._sessions)

    def stats(self) -> ThreadStats:
        """Counters over every thread, gathered one session at a time."""
        stats = ThreadStats()
        for session_code in self.session_codes():
            threads = self.list_by_session(session_code)
            if not threads:
                continue
            stats.total_sessions += 1
            for thread in threads:
                stats.total_threads += 1
                if thread.is_active:
                    stats.active_threads += 1
                category = thread.category.value
                status = thread.status.value
                stats.threads_by_category[category] = stats.threads_by_category.get(category, 0) + 1
                stats.threads_by_status[status] = stats.threads_by_status.get(status, 0) + 1
        return stats

    # --- eviction ------------------------------------------------------------

    def evict(self, max_age_hours: float) -> int:
        """
        Drop stale threads and empty sessions.

        A thread is kept when it was updated within `max_age_hours`, or when it is still
        active with a non-terminal status, whatever its age. A session whose list
        becomes empty is removed entirely.

        Only one sweep runs at a time; an overlapping call returns 0 immediately.

        Args:
            max_age_hours (float): Age limit, measured from each thread's `updated_at`.

        Returns:
            int: Number of threads removed.
        """
        if not self._evict_lock.acquire(blocking=False):
            logger.warning("Eviction sweep already running; skipping overlapping request")
            return 0
        try:
            max_age = timedelta(hours=max_age_hours)
            total_evicted = 0
            active_remaining = 0
            for session_code in self.session_codes():
                evicted, active = self._evict_session(session_code, max_age)
                total_evicted += evicted
                active_remaining += active
            self._prune_idle_locks()

            THREADS_EVICTED.inc(total_evicted)
            ACTIVE_THREADS.set(active_remaining)
            logger.info(
                "Eviction completed",
                extra={
                    'total_evicted': total_evicted,
                    'remaining_sessions': len(self.session_codes()),
                    'max_age_hours': max_age_hours,
                }
            )
            return total_evicted
        finally:
            self._evict_lock.release()

    def _prune_idle_locks(self) -> None:
        # Reads of unknown sessions leave lock entries behind; retire the idle ones.
        with self._registry_lock:
            for session_code in list(self._session_locks):
                if session_code not in self._sessions and not self._session_locks[session_code].locked():
                    del self._session_locks[session_code]

    def _evict_session(self, session_code: str, max_age: timedelta) -> tuple:
        with self._locked_session(session_code):
            threads = self._sessions.get(session_code)
            if threads is None:
                return 0, 0
            now = self._clock()
            kept = [
                t for t in threads
                if now - t.updated_at <= max_age or (t.is_active and not t.is_terminal)
            ]
            kept_ids = {t.id for t in kept}
            removed_ids = [t.id for t in threads if t.id not in kept_ids]

            with self._registry_lock:
                for thread_id in removed_ids:
                    self._index.pop(thread_id, None)
                if kept:
                    self._sessions[session_code] = kept
                else:
                    del self._sessions[session_code]
                    del self._session_locks[session_code]

        if removed_ids:
            logger.info(
                "Evicted old threads",
                extra={
                    'session_code': session_code,
                    'evicted_count': len(removed_ids),
                    'remaining_count': len(kept),
                }
            )
        return len(removed_ids), sum(1 for t in kept if t.is_active)
