"""
core/matcher.py

Scoring of in-flight threads against an incoming message.

Each candidate thread gets a score in [0, 1] built from three independent signals:

| Signal          | Weight | Meaning                                                    |
|-----------------|--------|------------------------------------------------------------|
| keyword overlap | 0.40   | Jaccard similarity of message and thread keyword sets      |
| context         | 0.35   | Category-specific continuity cues (item names, lexicons)   |
| reference       | 0.25   | Explicit back-references ("my request") and repeated timing |

The best candidate wins only if its score clears the threshold; otherwise the caller
starts a new thread. Equal scores go to the thread created first.
"""

from typing import Iterable, Optional, Set

from config.logging_config import get_logger
from core.keywords import extract_keywords
from core.thread_store import ThreadStore
from monitoring.metrics import MATCH_SCORE, THREAD_MATCHES
from shared.models import (
    ComplaintContext,
    FaqContext,
    Intent,
    RequestContext,
    Thread,
    ThreadCategory,
    category_for_intent,
)

logger = get_logger(__name__)

KEYWORD_WEIGHT = 0.40
CONTEXT_WEIGHT = 0.35
REFERENCE_WEIGHT = 0.25
DEFAULT_MATCH_THRESHOLD = 0.3

ITEM_NAME_BONUS = 0.6
ITEM_WORDS_BONUS = 0.3
COMPLAINT_LANGUAGE_BONUS = 0.4
QUESTION_PATTERN_BONUS = 0.3
BACK_REFERENCE_BONUS = 0.7
TIMING_BONUS = 0.3

COMPLAINT_LEXICON = ('issue', 'problem', 'complaint', 'wrong', 'broken', 'not working')
QUESTION_LEXICON = ('what', 'when', 'where', 'how', 'why', 'can', 'is', 'are')
BACK_REFERENCE_PHRASES = (
    'my request', 'my complaint', 'the issue', 'my order', 'that request',
    'this problem', 'my question', 'earlier request', 'previous request',
)

def _contains_any(message_lower: str, phrases: Iterable[str]) -> bool:
    return any(phrase in message_lower for phrase in phrases)

def keyword_overlap(first: Iterable[str], second: Iterable[str]) -> float:
    """
    Jaccard similarity of two keyword collections, case-insensitive.

    Returns 0.0 when either collection is empty.
    """
    a = {keyword.lower() for keyword in first}
    b = {keyword.lower() for keyword in second}
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)

def context_score(thread: Thread, message_lower: str) -> float:
    """
    Category-specific continuity score, capped at 1.0.

    - request/upsell: 0.6 when the remembered item name appears verbatim, plus up to
      0.3 for the share of the item name's words (three letters or longer) present
    - complaint: 0.4 when the message uses complaint language
    - faq: 0.3 when the message is phrased as a question
    """
    score = 0.0
    context = thread.context

    if isinstance(context, RequestContext) and context.item_name:
        item_name = context.item_name.lower().strip()
        if item_name and item_name in message_lower:
            score += ITEM_NAME_BONUS
        item_words = item_name.split()
        if item_words:
            matched = [word for word in item_words if len(word) > 2 and word in message_lower]
            score += (len(matched) / len(item_words)) * ITEM_WORDS_BONUS

    elif isinstance(context, ComplaintContext):
        if _contains_any(message_lower, COMPLAINT_LEXICON):
            score += COMPLAINT_LANGUAGE_BONUS

    elif isinstance(context, FaqContext):
        if _contains_any(message_lower, QUESTION_LEXICON):
            score += QUESTION_PATTERN_BONUS

    return min(score, 1.0)

def reference_score(thread: Thread, message_lower: str) -> float:
    """Explicit back-reference score, capped at 1.0."""
    score = 0.0
    if _contains_any(message_lower, BACK_REFERENCE_PHRASES):
        score += BACK_REFERENCE_BONUS

    timing = getattr(thread.context, 'timing_preference', None)
    if timing and timing.lower() in message_lower:
        score += TIMING_BONUS

    return min(score, 1.0)

def calculate_match_score(thread: Thread, message_lower: str, message_keywords: Set[str]) -> float:
    """Weighted sum of the three signals, capped at 1.0."""
    overlap = keyword_overlap(message_keywords, thread.context.keywords)
    contextual = context_score(thread, message_lower)
    reference = reference_score(thread, message_lower)
    score = overlap * KEYWORD_WEIGHT + contextual * CONTEXT_WEIGHT + reference * REFERENCE_WEIGHT

    logger.debug(
        "Score breakdown",
        extra={
            'thread_id': thread.id,
            'keyword_overlap': overlap,
            'context_score': contextual,
            'reference_score': reference,
            'total_score': score,
        }
    )
    return min(score, 1.0)

def types_match(category: ThreadCategory, intent_type: str) -> bool:
    """True when `intent_type` is one of the aliases of `category` (unknown types alias `general`)."""
    return category_for_intent(intent_type) is category

class ThreadMatcher:
    """
    Picks the in-flight thread an intent belongs to, if any.

    Args:
        store (ThreadStore): Source of the session's active threads.
        threshold (float): A candidate must score strictly above this to be selected.
    """

    def __init__(self, store: ThreadStore, threshold: float = DEFAULT_MATCH_THRESHOLD):
        self.store = store
        self.threshold = threshold

    def candidates(self, session_code: str, intent_type: str) -> list:
        """Active, non-terminal threads of the session whose category accepts `intent_type`."""
        return [
            thread for thread in self.store.list_active(session_code)
            if not thread.is_terminal and types_match(thread.category, intent_type)
        ]

    def match_for_intent(
        self,
        session_code: str,
        message: str,
        intent: Intent,
        exclude_ids: Optional[Set[str]] = None,
    ) -> Optional[Thread]:
        """
        Find the thread of `session_code` that `message` continues for this intent.

        Args:
            session_code (str): Session to search.
            message (str): Raw guest message.
            intent (Intent): The intent being matched; its type selects the candidate
                pool and its details contribute keywords.
            exclude_ids (Optional[Set[str]]): Threads that must not be considered.

        Returns:
            Optional[Thread]: Snapshot of the winning thread, or None when no candidate
            scores above the threshold.
        """
        category = intent.category
        pool = [
            thread for thread in self.candidates(session_code, intent.type)
            if not exclude_ids or thread.id not in exclude_ids
        ]
        if not pool:
            THREAD_MATCHES.labels(category=category.value, outcome='unmatched').inc()
            return None

        message_lower = message.lower()
        message_keywords = extract_keywords(message, intent.details)

        best_match: Optional[Thread] = None
        best_score = 0.0
        # Pool is in creation order and only a strictly greater score replaces the
        # leader, so the earliest thread wins ties.
        for thread in pool:
            score = calculate_match_score(thread, message_lower, message_keywords)
            if score > best_score:
                best_match, best_score = thread, score

        MATCH_SCORE.observe(best_score)
        if best_match is None or best_score <= self.threshold:
            THREAD_MATCHES.labels(category=category.value, outcome='unmatched').inc()
            logger.debug(
                "No thread above threshold",
                extra={'session_code': session_code, 'best_score': best_score, 'threshold': self.threshold}
            )
            return None

        THREAD_MATCHES.labels(category=category.value, outcome='matched').inc()
        logger.info(
            "Found matching thread",
            extra={
                'session_code': session_code,
                'thread_id': best_match.id,
                'score': best_score,
                'category': best_match.category.value,
            }
        )
        return best_match
