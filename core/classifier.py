"""
core/classifier.py

Boundary to the external intent classifier.

The router never classifies messages itself. It consumes a multi-intent classification
(`language`, `sentiment`, and a list of `{type, confidence, details}` intents) from a
classifier service and turns the raw payload into typed `Classification` objects.
Parsing happens here, once, so that everything downstream works with the closed union
of intent details instead of loosely shaped dictionaries.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import CONFIG
from shared.flow_client import build_url, post_json
from shared.models import Classification, Intent

logger = logging.getLogger(__name__)

def parse_classification(payload: Optional[Dict[str, Any]], language: str = "en") -> Classification:
    """
    Convert a raw classifier payload into a `Classification`.

    Intents are validated one by one: a malformed intent (missing type, confidence
    outside [0, 1], details of the wrong shape) is dropped with a warning instead of
    invalidating the whole payload. When no usable intent survives, the single
    general-intent fallback is returned.

    Args:
        payload (Optional[Dict[str, Any]]): JSON object produced by the classifier.
        language (str): Language to assume when the payload does not carry one.

    Returns:
        Classification: Typed classification with at least one intent.
    """
    if not isinstance(payload, dict):
        logger.warning("[parse_classification] Payload is not an object; using general fallback")
        return Classification.general_fallback(language)

    intents: List[Intent] = []
    raw_intents = payload.get('intents')
    for raw_intent in raw_intents if isinstance(raw_intents, list) else []:
        try:
            intents.append(Intent.model_validate(raw_intent))
        except ValidationError as e:
            logger.warning(f"[parse_classification] Dropping malformed intent {raw_intent!r}: {e.error_count()} error(s)")

    detected_language = payload.get('language') or language
    if not intents:
        logger.info("[parse_classification] No usable intents; using general fallback")
        return Classification.general_fallback(detected_language)

    sentiment = payload.get('sentiment') or payload.get('overall_sentiment') or 'neutral'
    return Classification(language=detected_language, sentiment=sentiment, intents=intents)


class BaseIntentClassifier(ABC):
    """
    Interface of the external intent classifier.

    Implementations may raise on failure; the dispatcher substitutes the general-intent
    fallback, so a classifier outage never reaches the guest.
    """

    @abstractmethod
    async def classify(
        self,
        message: str,
        language: str,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> Classification:
        """
        Classify a guest message.

        Args:
            message (str): The raw guest message.
            language (str): Language of the message as known by the caller.
            history (Optional[List[Dict[str, str]]]): Recent role/content pairs, if any.

        Returns:
            Classification: Language, sentiment, and independent intents.
        """


class RemoteIntentClassifier(BaseIntentClassifier):
    """
    Classifier backed by an HTTP service.

    Posts `{message, language, history}` to `<classifier.base_url>/api/classify` and parses
    the JSON reply with `parse_classification`. The blocking HTTP call runs in a worker
    thread so the event loop stays free.
    """

    def __init__(self, base_url: Optional[str] = None, timeout_s: Optional[float] = None):
        classifier_cfg = CONFIG.get('classifier', {}) or {}
        self.base_url = base_url if base_url is not None else classifier_cfg.get('base_url')
        self.timeout_s = float(timeout_s if timeout_s is not None else classifier_cfg.get('timeout_seconds', 4.0))
        logger.info("[RemoteIntentClassifier] Initialized", extra={'base_url': self.base_url})

    async def classify(
        self,
        message: str,
        language: str,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> Classification:
        url = build_url(self.base_url, '/api/classify')
        payload = {'message': message, 'language': language, 'history': history or []}
        response = await asyncio.to_thread(post_json, url, payload, self.timeout_s)
        return parse_classification(response, language)
