"""
core/keywords.py

Keyword extraction for thread matching.

A thread remembers the keyword set of the message that created it; every later
message of the same session is reduced to the same kind of set and compared against
it. Keywords come from two sources: the message text itself and the domain tokens the
classifier already extracted (FAQ keywords, complaint keywords, and item names).
"""

import string
from typing import Iterable, Optional, Set

from shared.models import (
    ComplaintDetails,
    FaqDetails,
    IntentDetails,
    RequestDetails,
)

MIN_KEYWORD_LENGTH = 3

STOP_WORDS = frozenset({
    'the', 'and', 'but', 'for', 'are', 'was', 'were', 'been', 'have', 'has', 'had',
    'do', 'does', 'did', 'will', 'would', 'could', 'should', 'may', 'might', 'can',
    'a', 'an', 'to', 'of', 'in', 'on', 'at', 'by', 'with', 'from',
})

def tokenize(text: Optional[str]) -> Set[str]:
    """
    Split text on whitespace into lowercase tokens without surrounding punctuation.

    Examples:
        tokenize("More towels, please!") -> {"more", "towels", "please"}
    """
    if not text:
        return set()
    tokens = (raw.strip(string.punctuation) for raw in text.lower().split())
    return {token for token in tokens if token}

def _keep(tokens: Iterable[str], drop_stop_words: bool) -> Set[str]:
    return {
        token for token in tokens
        if len(token) >= MIN_KEYWORD_LENGTH and not (drop_stop_words and token in STOP_WORDS)
    }

def _domain_tokens(details: Optional[IntentDetails]) -> Set[str]:
    tokens: Set[str] = set()
    if isinstance(details, FaqDetails):
        for keyword in details.faq_keywords:
            tokens |= tokenize(keyword)
    elif isinstance(details, ComplaintDetails):
        for keyword in details.complaint_keywords:
            tokens |= tokenize(keyword)
    elif isinstance(details, RequestDetails):
        for item in details.potential_items_mentioned:
            tokens |= tokenize(item.guest_phrasing_for_item)
            tokens |= tokenize(item.guessed_item_name)
    return tokens

def extract_keywords(message: str, details: Optional[IntentDetails] = None) -> Set[str]:
    """
    Build the normalized keyword set for a message and its intent details.

    Message tokens shorter than three characters and stop words are dropped. Domain
    tokens supplied by the classifier are kept even when they are stop words, because
    the classifier chose them deliberately, but they are subject to the same length
    floor.

    Args:
        message (str): Raw guest message.
        details (Optional[IntentDetails]): Typed details of the intent being matched.

    Returns:
        Set[str]: Deduplicated lowercase keywords.
    """
    keywords = _keep(tokenize(message), drop_stop_words=True)
    keywords |= _keep(_domain_tokens(details), drop_stop_words=False)
    return keywords
