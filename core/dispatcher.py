"""
core/dispatcher.py

Per-session multiplexer for guest messages.

For every incoming message the dispatcher:
1. Obtains a multi-intent classification (general-intent fallback on failure)
2. Matches each intent to an in-flight thread of the session, or creates one
3. Picks the primary thread and the handling path for the reply
4. Awaits the responder for that path
5. Folds the reply into the primary thread and advances its lifecycle

Steps 2 and 3 are synchronous (`route`), so a cancelled turn can never leave a thread
half-updated: at worst it leaves freshly created open threads and appended user messages.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from config import CONFIG
from config.logging_config import get_logger
from core.classifier import BaseIntentClassifier
from core.keywords import extract_keywords
from core.lifecycle import InvalidTransitionError, handling_path_for
from core.matcher import DEFAULT_MATCH_THRESHOLD, ThreadMatcher
from core.thread_store import ThreadStore
from monitoring.metrics import DISPATCH_LATENCY, ERROR_COUNT, track_latency
from pipelines.base import BaseResponder
from shared.models import (
    Classification,
    ComplaintContext,
    ComplaintDetails,
    FaqContext,
    FaqDetails,
    GeneralContext,
    HandlingPath,
    Intent,
    MessageRole,
    RequestContext,
    RequestDetails,
    ResponderResult,
    Thread,
    ThreadCategory,
    ThreadContext,
    ThreadContextData,
    ThreadStats,
    ThreadStatus,
)
from shared.utils import get_fallback_reply, truncate_message_for_logging

logger = get_logger(__name__)

@dataclass
class IntentAssignment:
    """The thread one intent of the current message was attached to."""
    intent: Intent
    thread: Thread
    is_new: bool

@dataclass
class RoutingDecision:
    """
    Outcome of routing one message.

    `primary` is the assignment of the highest-confidence intent; its thread receives the
    reply. Several assignments may point at the same thread when sibling intents matched
    it, but the user message is stored on that thread only once.
    """
    session_code: str
    message: str
    classification: Classification
    assignments: List[IntentAssignment]
    primary: IntentAssignment

    @property
    def primary_thread(self) -> Thread:
        return self.primary.thread

    @property
    def handling_path(self) -> HandlingPath:
        return handling_path_for(self.primary.thread.category)

    @property
    def thread_ids(self) -> List[str]:
        """Distinct ids of every thread touched this turn, in intent order."""
        seen: List[str] = []
        for assignment in self.assignments:
            if assignment.thread.id not in seen:
                seen.append(assignment.thread.id)
        return seen

@dataclass
class DispatchResult:
    """What the outer layer needs after a turn: the reply and where it was routed."""
    reply: str
    success: bool
    primary_thread_id: str
    handling_path: HandlingPath
    is_new_thread: bool
    thread_ids: List[str] = field(default_factory=list)
    action_created: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reply': self.reply,
            'success': self.success,
            'primary_thread_id': self.primary_thread_id,
            'handling_path': self.handling_path.value,
            'is_new_thread': self.is_new_thread,
            'thread_ids': list(self.thread_ids),
            'action_created': self.action_created,
            'error': self.error,
        }

def seed_context(intent: Intent, message: str) -> ThreadContextData:
    """
    Build the initial context of a thread created for `intent`.

    Keywords come from the message and the intent's details; the category-specific fields
    come from the typed details. Request and upsell threads remember the first item the
    guest mentioned.
    """
    category = intent.category
    details = intent.details
    keywords = extract_keywords(message, details)

    if category in (ThreadCategory.REQUEST, ThreadCategory.UPSELL):
        context = RequestContext(keywords=keywords)
        if isinstance(details, RequestDetails) and details.potential_items_mentioned:
            item = details.potential_items_mentioned[0]
            context.item_name = item.guessed_item_name or None
            context.quantity = item.extracted_quantity
            context.timing_preference = item.extracted_time_preference or None
        return context

    if category is ThreadCategory.COMPLAINT:
        summary = details.complaint_summary if isinstance(details, ComplaintDetails) else None
        return ComplaintContext(keywords=keywords, complaint_summary=summary)

    if category is ThreadCategory.FAQ:
        if isinstance(details, FaqDetails):
            return FaqContext(keywords=keywords, faq_query=details.faq_query_text, faq_keywords=list(details.faq_keywords))
        return FaqContext(keywords=keywords)

    return GeneralContext(keywords=keywords)

class ThreadDispatcher:
    """
    Routes guest messages into threads and drives the thread lifecycle.

    Args:
        store (ThreadStore): Owner of all thread state.
        classifier (BaseIntentClassifier): External multi-intent classifier.
        responders (Mapping[HandlingPath, BaseResponder]): One flow handler per handling path.
        matcher (Optional[ThreadMatcher]): Defaults to a matcher over `store` using
            `threads.match_threshold`.
        config (Optional[Dict[str, Any]]): Defaults to the global `CONFIG`.
    """

    def __init__(
        self,
        store: ThreadStore,
        classifier: BaseIntentClassifier,
        responders: Mapping[HandlingPath, BaseResponder],
        matcher: Optional[ThreadMatcher] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.config = config if config is not None else CONFIG
        threads_cfg = self.config.get('threads', {}) or {}
        dispatcher_cfg = self.config.get('dispatcher', {}) or {}

        self.store = store
        self.classifier = classifier
        self.responders = dict(responders)
        self.matcher = matcher or ThreadMatcher(
            store, threshold=float(threads_cfg.get('match_threshold', DEFAULT_MATCH_THRESHOLD))
        )
        self.context_message_limit = int(threads_cfg.get('context_message_limit', 5))
        self.classifier_timeout = float(dispatcher_cfg.get('classifier_timeout_seconds', 5.0))
        self.responder_timeout = float(dispatcher_cfg.get('responder_timeout_seconds', 20.0))
        self._turn_locks: Dict[str, asyncio.Lock] = {}

        logger.info(
            "Initialized dispatcher",
            extra={
                'handling_paths': sorted(path.value for path in self.responders),
                'match_threshold': self.matcher.threshold,
            }
        )

    # --- routing -------------------------------------------------------------

    def route(self, session_code: str, message: str, classification: Classification) -> RoutingDecision:
        """
        Attach every intent of `classification` to a thread of `session_code`.

        Each intent is matched independently against the threads that existed before this
        message; threads created for sibling intents are never candidates. A matched
        thread gets the user message appended once, however many intents matched it. An
        unmatched intent creates a new thread seeded from its details. A classification
        without intents is treated as a single general intent with confidence 1.0.

        Returns:
            RoutingDecision: All assignments plus the primary one (highest confidence,
            earliest intent on ties).
        """
        if not classification.intents:
            logger.info("No usable intents; treating message as general", extra={'session_code': session_code})
            classification = Classification.general_fallback(classification.language)

        assignments: List[IntentAssignment] = []
        created_ids: Set[str] = set()
        appended_ids: Set[str] = set()

        for intent in classification.intents:
            matched = self.matcher.match_for_intent(session_code, message, intent, exclude_ids=created_ids)
            if matched is not None:
                thread = matched
                if matched.id not in appended_ids:
                    thread = self.store.add_message(matched.id, message, MessageRole.USER) or matched
                    appended_ids.add(matched.id)
                assignments.append(IntentAssignment(intent=intent, thread=thread, is_new=False))
                continue

            thread = self.store.create_thread(session_code, intent.category, seed_context(intent, message), message)
            created_ids.add(thread.id)
            assignments.append(IntentAssignment(intent=intent, thread=thread, is_new=True))

        primary = assignments[0]
        for assignment in assignments[1:]:
            if assignment.intent.confidence > primary.intent.confidence:
                primary = assignment

        decision = RoutingDecision(
            session_code=session_code,
            message=message,
            classification=classification,
            assignments=assignments,
            primary=primary,
        )
        logger.info(
            "Routed message",
            extra={
                'session_code': session_code,
                'thread_id': primary.thread.id,
                'intents': [intent.type for intent in classification.intents],
                'created_threads': len(created_ids),
                'handling_path': decision.handling_path.value,
            }
        )
        return decision

    def complete_turn(self, decision: RoutingDecision, result: ResponderResult) -> Optional[Thread]:
        """
        Record the responder's reply on the primary thread and advance its status.

        - note path with an action record: `awaiting_confirmation`
        - note path without one: status unchanged
        - answer path: `resolved`, which also deactivates the thread

        General threads additionally remember the reply as `last_response`.

        Returns:
            Optional[Thread]: Snapshot after the update, or None if the thread was evicted
            while the responder was running.
        """
        thread_id = decision.primary_thread.id
        updated = self.store.add_message(thread_id, result.reply, MessageRole.ASSISTANT)
        if updated is None:
            return None

        if updated.category is ThreadCategory.GENERAL:
            updated = self.store.merge_context(thread_id, {'last_response': result.reply}) or updated

        if decision.handling_path is HandlingPath.ANSWER:
            target = ThreadStatus.RESOLVED
        elif result.action_created:
            target = ThreadStatus.AWAITING_CONFIRMATION
        else:
            return updated

        try:
            return self.store.set_status(thread_id, target)
        except InvalidTransitionError as e:
            # The outer system closed the thread while the responder was running.
            logger.warning(
                "Thread closed during turn; keeping its status",
                extra={'thread_id': thread_id, 'status': e.current.value, 'target_status': target.value}
            )
            return updated

    # --- end-to-end turn -----------------------------------------------------

    def _turn_lock(self, session_code: str) -> asyncio.Lock:
        lock = self._turn_locks.get(session_code)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[session_code] = lock
        return lock

    @track_latency(DISPATCH_LATENCY)
    async def handle_message(
        self,
        session_code: str,
        message: str,
        language: str = "en",
        history: Optional[List[Dict[str, str]]] = None,
    ) -> DispatchResult:
        """
        Run one guest turn end to end.

        Turns of the same session are serialized; different sessions proceed concurrently.

        Args:
            session_code (str): Opaque session identifier.
            message (str): The guest's message.
            language (str): Language known by the caller; the classifier may refine it.
            history (Optional[List[Dict[str, str]]]): Recent role/content pairs for the classifier.

        Returns:
            DispatchResult: `success=False` with a localized apology when the responder
            failed; the primary thread is then left exactly as routing left it.
        """
        logger.info(
            "Processing message",
            extra={'session_code': session_code, 'message_preview': truncate_message_for_logging(message, 50)}
        )
        async with self._turn_lock(session_code):
            classification = await self._classify(session_code, message, language, history)
            decision = self.route(session_code, message, classification)
            return await self._respond(decision)

    async def _classify(
        self,
        session_code: str,
        message: str,
        language: str,
        history: Optional[List[Dict[str, str]]],
    ) -> Classification:
        try:
            classification = await asyncio.wait_for(
                self.classifier.classify(message, language, history),
                timeout=self.classifier_timeout,
            )
        except asyncio.TimeoutError:
            ERROR_COUNT.labels(type='classifier', location='dispatcher.classify').inc()
            logger.warning(
                "Classifier timed out; using general fallback",
                extra={'session_code': session_code, 'timeout_seconds': self.classifier_timeout}
            )
            return Classification.general_fallback(language)
        except Exception as e:
            ERROR_COUNT.labels(type='classifier', location='dispatcher.classify').inc()
            logger.error(
                "Classifier failed; using general fallback",
                exc_info=True,
                extra={'session_code': session_code, 'error_type': type(e).__name__}
            )
            return Classification.general_fallback(language)

        if not classification.intents:
            return Classification.general_fallback(classification.language or language)
        return classification

    def build_thread_context(self, decision: RoutingDecision) -> ThreadContext:
        thread = decision.primary_thread
        return ThreadContext(
            thread=thread,
            is_new_thread=decision.primary.is_new,
            language=decision.classification.language,
            handling_path=decision.handling_path,
            classification=decision.classification,
            recent_messages=thread.recent_messages(self.context_message_limit),
        )

    async def _respond(self, decision: RoutingDecision) -> DispatchResult:
        path = decision.handling_path
        thread_context = self.build_thread_context(decision)
        base = dict(
            primary_thread_id=decision.primary_thread.id,
            handling_path=path,
            is_new_thread=decision.primary.is_new,
            thread_ids=decision.thread_ids,
        )

        responder = self.responders.get(path)
        if responder is None:
            ERROR_COUNT.labels(type='responder', location=f"dispatcher.{path.value}").inc()
            return self._failed_turn(decision, KeyError(path.value), base)

        try:
            outcome = await asyncio.wait_for(
                self._guarded_respond(responder, thread_context, decision.message),
                timeout=self.responder_timeout,
            )
        except asyncio.TimeoutError as e:
            ERROR_COUNT.labels(type='responder', location=f"dispatcher.{path.value}").inc()
            return self._failed_turn(decision, e, base)

        # Exceptions raised inside the responder were already counted by BaseResponder.
        if isinstance(outcome, Exception):
            return self._failed_turn(decision, outcome, base)

        self.complete_turn(decision, outcome)
        logger.info(
            "Turn completed",
            extra={
                'session_code': decision.session_code,
                'thread_id': decision.primary_thread.id,
                'handling_path': path.value,
                'action_created': outcome.action_created,
            }
        )
        return DispatchResult(reply=outcome.reply, success=True, action_created=outcome.action_created, **base)

    @staticmethod
    async def _guarded_respond(responder: BaseResponder, thread_context: ThreadContext, message: str):
        """Run the responder, returning its exception instead of raising it."""
        try:
            return await responder.respond(thread_context, message)
        except Exception as e:
            return e

    def _failed_turn(self, decision: RoutingDecision, error: Exception, base: Dict[str, Any]) -> DispatchResult:
        logger.error(
            "Responder failed; thread left open for retry",
            exc_info=error,
            extra={
                'session_code': decision.session_code,
                'thread_id': decision.primary_thread.id,
                'handling_path': decision.handling_path.value,
                'error_type': type(error).__name__,
            }
        )
        return DispatchResult(
            reply=get_fallback_reply(decision.classification.language),
            success=False,
            error=type(error).__name__,
            **base,
        )

    # --- operations for the outer layer --------------------------------------

    def set_thread_status(self, thread_id: str, status: ThreadStatus) -> Optional[Thread]:
        """Explicit confirm/cancel from the outer system; see `ThreadStore.set_status`."""
        return self.store.set_status(thread_id, status)

    def get_active_threads(self, session_code: str) -> List[Thread]:
        return self.store.list_active(session_code)

    def get_all_threads(self, session_code: str) -> List[Thread]:
        return self.store.list_by_session(session_code)

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        return self.store.get_thread(thread_id)

    def evict(self, max_age_hours: float) -> int:
        """Run one eviction sweep and forget turn locks of sessions that no longer exist."""
        evicted = self.store.evict(max_age_hours)
        live_sessions = set(self.store.session_codes())
        for session_code in list(self._turn_locks):
            if session_code not in live_sessions and not self._turn_locks[session_code].locked():
                del self._turn_locks[session_code]
        return evicted

    def stats(self) -> ThreadStats:
        return self.store.stats()
