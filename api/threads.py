"""
api/threads.py

HTTP surface of the thread router.

Endpoints (mounted under /api in main.py):
  - POST /chat: Run one guest turn. Classifies the message, routes it into the session's
                threads, and returns the reply plus where it was routed.
  - GET  /sessions/{session_code}/threads: Thread summaries of a session, optionally only
                the active ones (for UI and status surfaces).
  - GET  /threads/stats: Counters over every thread held in memory.
  - POST /threads/evict: Run one eviction sweep immediately.
  - GET  /threads/{thread_id}: One thread with its full message list.
  - POST /threads/{thread_id}/status: Explicit confirm/cancel from the outer system.

The dispatcher is created in main.py and read from `app.state.dispatcher` through the
`get_dispatcher` dependency, which tests can override.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import CONFIG
from core.dispatcher import ThreadDispatcher
from core.lifecycle import InvalidTransitionError
from monitoring.metrics import REQUEST_COUNT, REQUEST_LATENCY
from shared.models import (
    ComplaintContext,
    FaqContext,
    RequestContext,
    Thread,
    ThreadStatus,
)
from shared.utils import truncate_message_for_logging

# Get a logger instance for this module
logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """One guest message addressed to a session."""

    session_code: str = Field(..., min_length=1, description="Opaque guest session identifier")
    message: str = Field(..., min_length=1, description="Raw guest message")
    language: str = Field("en", description="Language known by the caller, e.g. 'en' or 'es'")


class StatusUpdateRequest(BaseModel):
    status: ThreadStatus


def get_dispatcher(request: Request) -> ThreadDispatcher:
    return request.app.state.dispatcher


def thread_summary(thread: Thread) -> Dict[str, Any]:
    """
    Compact view of a thread for list endpoints.

    Category-specific fields are None for categories that do not carry them.
    """
    context = thread.context
    last_message = thread.last_message
    return {
        "id": thread.id,
        "category": thread.category.value,
        "status": thread.status.value,
        "is_active": thread.is_active,
        "created_at": thread.created_at.isoformat(),
        "updated_at": thread.updated_at.isoformat(),
        "last_message": last_message.content if last_message else None,
        "message_count": len(thread.messages),
        "item_name": context.item_name if isinstance(context, RequestContext) else None,
        "complaint_summary": context.complaint_summary if isinstance(context, ComplaintContext) else None,
        "faq_query": context.faq_query if isinstance(context, FaqContext) else None,
    }


@router.post("/chat")
async def chat(request: ChatRequest, dispatcher: ThreadDispatcher = Depends(get_dispatcher)):
    """
    Run one guest turn through the dispatcher.

    A failing classifier or responder never turns into an HTTP error: the dispatcher
    degrades to a general intent or a localized apology, and `success` tells the caller
    which happened. Only unexpected failures of the router itself produce a 500.

    Returns:
        JSONResponse: `reply`, `success`, `primary_thread_id`, `handling_path`,
            `is_new_thread`, `thread_ids`, `action_created`, and `error`.
    """
    logger.info(
        f"[chat] Received message for session {request.session_code}: "
        f"'{truncate_message_for_logging(request.message, 50)}'"
    )
    try:
        with REQUEST_LATENCY.labels(method="POST", endpoint="/api/chat").time():
            result = await dispatcher.handle_message(
                session_code=request.session_code,
                message=request.message,
                language=request.language,
            )
    except Exception as e:
        logger.error(f"[chat] Unexpected error for session {request.session_code}: {e}", exc_info=True)
        REQUEST_COUNT.labels(method="POST", endpoint="/api/chat", status="500").inc()
        return JSONResponse(
            {"message": "Unexpected error while processing the message.", "type": "error"},
            status_code=500,
        )

    REQUEST_COUNT.labels(method="POST", endpoint="/api/chat", status="200").inc()
    return JSONResponse(result.to_dict())


@router.get("/sessions/{session_code}/threads")
async def list_session_threads(
    session_code: str,
    active_only: bool = Query(False, description="Only return threads that are still active"),
    dispatcher: ThreadDispatcher = Depends(get_dispatcher),
):
    if active_only:
        threads = dispatcher.get_active_threads(session_code)
    else:
        threads = dispatcher.get_all_threads(session_code)
    return JSONResponse({
        "session_code": session_code,
        "threads": [thread_summary(thread) for thread in threads],
    })


@router.get("/threads/stats")
async def thread_stats(dispatcher: ThreadDispatcher = Depends(get_dispatcher)):
    return JSONResponse(dispatcher.stats().to_dict())


@router.post("/threads/evict")
async def evict_threads(
    max_age_hours: Optional[float] = Query(None, ge=0, description="Defaults to threads.max_age_hours"),
    dispatcher: ThreadDispatcher = Depends(get_dispatcher),
):
    """
    Run one eviction sweep now.

    The scheduled sweeper does the same on an interval; this endpoint lets an external
    scheduler (or an operator) own the trigger instead.
    """
    if max_age_hours is None:
        max_age_hours = float(CONFIG.get("threads", {}).get("max_age_hours", 24))
    evicted = dispatcher.evict(max_age_hours)
    logger.info(f"[evict_threads] Evicted {evicted} thread(s) older than {max_age_hours}h")
    return JSONResponse({"evicted": evicted, "max_age_hours": max_age_hours})


@router.get("/threads/{thread_id}")
async def get_thread(thread_id: str, dispatcher: ThreadDispatcher = Depends(get_dispatcher)):
    thread = dispatcher.get_thread(thread_id)
    if thread is None:
        raise HTTPException(status_code=404, detail=f"Thread {thread_id} not found")
    return JSONResponse(thread.to_dict(include_messages=True))


@router.post("/threads/{thread_id}/status")
async def update_thread_status(
    thread_id: str,
    update: StatusUpdateRequest,
    dispatcher: ThreadDispatcher = Depends(get_dispatcher),
):
    """
    Move a thread along the lifecycle, e.g. confirm (`resolved`) or cancel (`cancelled`).

    HTTP Status Codes:
        200: Status changed; the updated summary is returned
        404: Unknown thread id (never created, or already evicted)
        409: The lifecycle has no such transition, e.g. cancelling a resolved thread
        422: Unknown status value
    """
    try:
        thread = dispatcher.set_thread_status(thread_id, update.status)
    except InvalidTransitionError as e:
        logger.warning(f"[update_thread_status] Rejected transition: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    if thread is None:
        raise HTTPException(status_code=404, detail=f"Thread {thread_id} not found")
    logger.info(f"[update_thread_status] Thread {thread_id} is now {thread.status.value}")
    return JSONResponse(thread_summary(thread))
