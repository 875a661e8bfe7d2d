"""
shared/models.py

Common data models and type definitions used across the thread router.

Two families of types live here:

1. Thread state owned by the `ThreadStore` (plain dataclasses). Callers only ever
   receive deep copies of these, so they are safe to read and serialize.
2. Classifier payloads (Pydantic models). Intent details are a closed tagged union:
   the intent's category, derived from its raw type through `INTENT_ALIASES`, selects
   which details model the payload is validated against. Nothing downstream inspects
   the shape of a details object at runtime.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, Any, List, Optional, Set, Union
from enum import Enum
from pydantic import AliasChoices, BaseModel, Field, field_validator

class ThreadCategory(Enum):
    """
    Thread-level grouping used for matching and routing.

    - REQUEST: items and services the guest wants delivered or performed
    - COMPLAINT: something is wrong and staff should know
    - FAQ: questions about policies and hotel information
    - GENERAL: greetings, small talk, anything unrecognized
    - UPSELL: interest in upgrades and premium services
    """
    REQUEST = "request"
    COMPLAINT = "complaint"
    FAQ = "faq"
    GENERAL = "general"
    UPSELL = "upsell"

class ThreadStatus(Enum):
    """Lifecycle states of a thread. RESOLVED and CANCELLED are terminal."""
    OPEN = "open"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({ThreadStatus.RESOLVED, ThreadStatus.CANCELLED})

class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"

class HandlingPath(Enum):
    """
    Category of flow handler that produces the reply for a thread.

    NOTE may record an actionable item for hotel staff; ANSWER never does.
    """
    NOTE = "note"
    ANSWER = "answer"

# Raw classifier intent types accepted by each thread category.
INTENT_ALIASES: Dict[ThreadCategory, frozenset] = {
    ThreadCategory.REQUEST: frozenset({
        'request', 'request_item', 'request_service', 'room_service',
        'housekeeping', 'maintenance', 'transportation',
    }),
    ThreadCategory.COMPLAINT: frozenset({'complaint', 'feedback_negative'}),
    ThreadCategory.FAQ: frozenset({'faq', 'policy_question', 'information_request', 'question'}),
    ThreadCategory.UPSELL: frozenset({'upsell', 'upgrade_request', 'premium_service'}),
    ThreadCategory.GENERAL: frozenset({'general', 'greeting', 'small_talk', 'chitchat'}),
}

def category_for_intent(intent_type: str) -> ThreadCategory:
    """
    Map a raw classifier intent type to its thread category.

    Matching is case-insensitive. Unrecognized types fall back to GENERAL.

    Examples:
        category_for_intent("housekeeping") -> ThreadCategory.REQUEST
        category_for_intent("weather") -> ThreadCategory.GENERAL
    """
    normalized = (intent_type or '').strip().lower()
    for category, aliases in INTENT_ALIASES.items():
        if normalized in aliases:
            return category
    return ThreadCategory.GENERAL


# --- Thread context variants -------------------------------------------------

@dataclass
class RequestContext:
    """Context of `request` and `upsell` threads: the item being asked for."""
    keywords: Set[str] = field(default_factory=set)
    item_name: Optional[str] = None
    quantity: Optional[Union[int, float, str]] = None
    timing_preference: Optional[str] = None

@dataclass
class ComplaintContext:
    keywords: Set[str] = field(default_factory=set)
    complaint_summary: Optional[str] = None

@dataclass
class FaqContext:
    keywords: Set[str] = field(default_factory=set)
    faq_query: Optional[str] = None
    faq_keywords: List[str] = field(default_factory=list)

@dataclass
class GeneralContext:
    keywords: Set[str] = field(default_factory=set)
    last_response: Optional[str] = None

ThreadContextData = Union[RequestContext, ComplaintContext, FaqContext, GeneralContext]

CONTEXT_TYPES = {
    ThreadCategory.REQUEST: RequestContext,
    ThreadCategory.UPSELL: RequestContext,
    ThreadCategory.COMPLAINT: ComplaintContext,
    ThreadCategory.FAQ: FaqContext,
    ThreadCategory.GENERAL: GeneralContext,
}

def context_to_dict(context: ThreadContextData) -> Dict[str, Any]:
    data = asdict(context)
    data['keywords'] = sorted(context.keywords)
    return data


# --- Threads -----------------------------------------------------------------

@dataclass
class ThreadMessage:
    id: str
    content: str
    role: MessageRole
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'content': self.content,
            'role': self.role.value,
            'timestamp': self.timestamp.isoformat(),
        }

@dataclass
class Thread:
    """
    One sub-conversation of a guest session, scoped to a single topic.

    `is_active` mirrors the status: it is False exactly when the status is terminal.
    `messages` is append-only; it is never reordered or truncated while the thread lives.
    """
    id: str
    session_code: str
    category: ThreadCategory
    context: ThreadContextData
    created_at: datetime
    updated_at: datetime
    status: ThreadStatus = ThreadStatus.OPEN
    is_active: bool = True
    messages: List[ThreadMessage] = field(default_factory=list)
    last_user_message_normalized: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_message(self) -> Optional[ThreadMessage]:
        return self.messages[-1] if self.messages else None

    def recent_messages(self, limit: int = 5) -> List[ThreadMessage]:
        if limit <= 0:
            return []
        return self.messages[-limit:]

    def to_dict(self, include_messages: bool = True) -> Dict[str, Any]:
        """
        Render the thread as a JSON-friendly dictionary.

        Args:
            include_messages (bool): When False only the message count is included,
                which keeps list views small.

        Returns:
            Dict[str, Any]: Enum members are rendered by value and datetimes in ISO 8601.
        """
        data = {
            'id': self.id,
            'session_code': self.session_code,
            'category': self.category.value,
            'status': self.status.value,
            'is_active': self.is_active,
            'context': context_to_dict(self.context),
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'message_count': len(self.messages),
        }
        if include_messages:
            data['messages'] = [message.to_dict() for message in self.messages]
        return data

@dataclass
class ThreadStats:
    """Point-in-time counters over every thread the store holds."""
    total_sessions: int = 0
    total_threads: int = 0
    active_threads: int = 0
    threads_by_category: Dict[str, int] = field(default_factory=dict)
    threads_by_status: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# --- Classifier payloads -----------------------------------------------------

class PotentialItem(BaseModel):
    """An item or service mentioned in a request or upsell intent."""
    guest_phrasing_for_item: str = Field("", description="What the guest actually said")
    guessed_item_name: str = Field("", description="Normalized item name")
    extracted_quantity: Optional[Union[int, float, str]] = None
    extracted_time_preference: Optional[str] = None

class RequestDetails(BaseModel):
    potential_items_mentioned: List[PotentialItem] = Field(default_factory=list)

class ComplaintDetails(BaseModel):
    complaint_summary: Optional[str] = None
    complaint_keywords: List[str] = Field(default_factory=list)

class FaqDetails(BaseModel):
    faq_query_text: Optional[str] = None
    faq_keywords: List[str] = Field(default_factory=list)

class GeneralDetails(BaseModel):
    pass

IntentDetails = Union[RequestDetails, ComplaintDetails, FaqDetails, GeneralDetails]

DETAILS_MODELS = {
    ThreadCategory.REQUEST: RequestDetails,
    ThreadCategory.UPSELL: RequestDetails,
    ThreadCategory.COMPLAINT: ComplaintDetails,
    ThreadCategory.FAQ: FaqDetails,
    ThreadCategory.GENERAL: GeneralDetails,
}

class Intent(BaseModel):
    """
    One classified purpose of a guest message.

    The `details` payload is validated against the model selected by the intent's
    category, so a `housekeeping` intent always carries `RequestDetails` and an
    unrecognized type always carries `GeneralDetails`.
    """
    type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    details: IntentDetails = Field(default_factory=GeneralDetails, validate_default=True)

    @field_validator('details', mode='before')
    @classmethod
    def _validate_details_for_category(cls, value, info):
        model = DETAILS_MODELS[category_for_intent(info.data.get('type', ''))]
        if isinstance(value, model):
            return value
        if value is None:
            value = {}
        elif isinstance(value, BaseModel):
            value = value.model_dump()
        return model.model_validate(value)

    @property
    def category(self) -> ThreadCategory:
        return category_for_intent(self.type)

class Classification(BaseModel):
    """Output of the external intent classifier for one guest message."""
    language: str = "en"
    sentiment: str = Field("neutral", validation_alias=AliasChoices('sentiment', 'overall_sentiment'))
    intents: List[Intent] = Field(default_factory=list)

    @classmethod
    def general_fallback(cls, language: str = "en") -> "Classification":
        """The classification used whenever the classifier yields nothing usable."""
        return cls(
            language=language or "en",
            sentiment="neutral",
            intents=[Intent(type=ThreadCategory.GENERAL.value, confidence=1.0)],
        )


# --- Flow handler contract ---------------------------------------------------

@dataclass
class ThreadContext:
    """
    Everything a responder needs to answer within one thread.

    The responder sees only the primary thread's recent messages rather than the full
    session transcript, which keeps each reply scoped to its topic.
    """
    thread: Thread
    is_new_thread: bool
    language: str
    handling_path: HandlingPath
    classification: Classification
    recent_messages: List[ThreadMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'thread': self.thread.to_dict(include_messages=False),
            'is_new_thread': self.is_new_thread,
            'language': self.language,
            'handling_path': self.handling_path.value,
            'classification': self.classification.model_dump(),
            'recent_messages': [message.to_dict() for message in self.recent_messages],
        }

@dataclass
class ResponderResult:
    """
    Result returned by a flow handler.

    `action_record` is the staff-facing record created by a note-producing flow, if any.
    """
    reply: str
    action_record: Optional[Dict[str, Any]] = None

    @property
    def action_created(self) -> bool:
        return bool(self.action_record)
