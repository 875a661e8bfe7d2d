"""
conftest.py – central pytest configuration, test bootstrap, and shared fixtures.

Pytest imports this module before it collects any test files, which lets us prepare the
environment once for every test:
  1) Extend `sys.path` with the project root directory so absolute-style imports like
     `from core ...` and `from shared ...` resolve without performing an editable install.
  2) Define environment defaults read at import time by the configuration layer: file
     logging is disabled and the background eviction sweeper is switched off, so tests
     neither write log files nor race a scheduler.

Shared fixtures provide a controllable clock, a fresh `ThreadStore`, and small builders for
classifier payloads so individual test modules stay focused on behavior.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root is on sys.path for direct imports like `core`, `shared`, etc.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Provide environment defaults for tests
os.environ.setdefault("LOG_FILE_PATH", "")
os.environ.setdefault("THREAD_SWEEP_ENABLED", "false")


class FakeClock:
    """Deterministic, manually advanced replacement for `shared.utils.utc_now`."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    from core.thread_store import ThreadStore
    return ThreadStore(clock=clock)


def make_intent(intent_type: str, confidence: float = 0.9, **details):
    """Build a typed `Intent` the way the classifier boundary would."""
    from shared.models import Intent
    return Intent.model_validate({"type": intent_type, "confidence": confidence, "details": details})


def make_classification(*intents, language: str = "en"):
    from shared.models import Classification
    return Classification(language=language, sentiment="neutral", intents=list(intents))


def towel_request(confidence: float = 0.9, timing: str = None):
    return make_intent(
        "request_item",
        confidence,
        potential_items_mentioned=[{
            "guest_phrasing_for_item": "towels",
            "guessed_item_name": "towels",
            "extracted_quantity": 2,
            "extracted_time_preference": timing,
        }],
    )


def checkout_question(confidence: float = 0.8):
    return make_intent(
        "faq",
        confidence,
        faq_query_text="What time is checkout?",
        faq_keywords=["checkout", "time"],
    )


# --- in-memory collaborators -------------------------------------------------

from core.classifier import BaseIntentClassifier  # noqa: E402
from pipelines.base import BaseResponder  # noqa: E402
from shared.models import ResponderResult  # noqa: E402


class FakeClassifier(BaseIntentClassifier):
    """Returns a fixed classification, optionally after a delay or by raising."""

    def __init__(self, classification=None, error: Exception = None, delay: float = 0.0):
        self.classification = classification
        self.error = error
        self.delay = delay
        self.calls = []

    async def classify(self, message, language, history=None):
        self.calls.append((message, language))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.classification


class FakeResponder(BaseResponder):
    """Records the thread contexts it receives and replies with a fixed result."""

    def __init__(self, path, reply: str = "ok", action_record=None, error: Exception = None,
                 delay: float = 0.0):
        self.handling_path = path
        self.reply = reply
        self.action_record = action_record
        self.error = error
        self.delay = delay
        self.contexts = []
        super().__init__()

    def get_pipeline_name(self) -> str:
        return f"fake_{self.handling_path.value}"

    async def _respond_internal(self, thread_context, message):
        self.contexts.append(thread_context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return ResponderResult(reply=self.reply, action_record=self.action_record)
