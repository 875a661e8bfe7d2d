"""
Tests for `core/thread_store.py`.

Covers:
- Thread creation (defaults, id format, seed-context validation, snapshot isolation)
- Message appends, status changes and context merges, including unknown thread ids
- Session listings in creation order
- Eviction retention rules and single-flight behavior
- Statistics
"""

import threading

import pytest

from core.lifecycle import InvalidTransitionError
from shared.models import (
    ComplaintContext,
    FaqContext,
    GeneralContext,
    MessageRole,
    RequestContext,
    ThreadCategory,
    ThreadStatus,
)


def _request(store, session="S1", message="Two towels please", item="towels"):
    return store.create_thread(
        session, ThreadCategory.REQUEST, RequestContext(keywords={"towels"}, item_name=item), message
    )


def test_create_thread_defaults(store, clock):
    thread = _request(store)

    assert thread.id.startswith("thread_")
    assert thread.session_code == "S1"
    assert thread.category is ThreadCategory.REQUEST
    assert thread.status is ThreadStatus.OPEN
    assert thread.is_active is True
    assert thread.created_at == thread.updated_at == clock.now
    assert len(thread.messages) == 1
    assert thread.messages[0].role is MessageRole.USER
    assert thread.messages[0].content == "Two towels please"
    assert thread.messages[0].id.startswith("msg_")
    assert thread.last_user_message_normalized == "two towels please"


def test_create_thread_ids_are_unique(store):
    ids = {_request(store).id for _ in range(50)}
    assert len(ids) == 50


def test_create_thread_rejects_mismatched_context(store):
    with pytest.raises(TypeError):
        store.create_thread("S1", ThreadCategory.FAQ, ComplaintContext(), "hi")


def test_upsell_threads_use_request_context(store):
    thread = store.create_thread(
        "S1", ThreadCategory.UPSELL, RequestContext(item_name="suite upgrade"), "Can I upgrade?"
    )
    assert thread.category is ThreadCategory.UPSELL
    assert thread.context.item_name == "suite upgrade"


def test_returned_threads_are_snapshots(store):
    thread = _request(store)
    thread.messages.clear()
    thread.context.keywords.add("tampered")
    thread.status = ThreadStatus.CANCELLED

    stored = store.get_thread(thread.id)
    assert len(stored.messages) == 1
    assert stored.context.keywords == {"towels"}
    assert stored.status is ThreadStatus.OPEN


def test_seed_context_is_copied(store):
    seed = RequestContext(keywords={"towels"})
    thread = store.create_thread("S1", ThreadCategory.REQUEST, seed, "towels")
    seed.keywords.add("pillows")
    assert store.get_thread(thread.id).context.keywords == {"towels"}


def test_add_message_appends_and_bumps_updated_at(store, clock):
    thread = _request(store)
    clock.advance(minutes=5)

    updated = store.add_message(thread.id, "Make it THREE", MessageRole.USER)

    assert [m.content for m in updated.messages] == ["Two towels please", "Make it THREE"]
    assert updated.updated_at == clock.now
    assert updated.last_user_message_normalized == "make it three"


def test_assistant_message_keeps_last_user_message(store):
    thread = _request(store)
    updated = store.add_message(thread.id, "On their way!", MessageRole.ASSISTANT)
    assert updated.messages[-1].role is MessageRole.ASSISTANT
    assert updated.last_user_message_normalized == "two towels please"


def test_unknown_thread_id_is_a_logged_noop(store):
    assert store.add_message("thread_missing", "hello", MessageRole.USER) is None
    assert store.set_status("thread_missing", ThreadStatus.CANCELLED) is None
    assert store.merge_context("thread_missing", {"keywords": {"x"}}) is None
    assert store.get_thread("thread_missing") is None


def test_terminal_status_deactivates_thread(store):
    thread = _request(store)
    resolved = store.set_status(thread.id, ThreadStatus.RESOLVED)
    assert resolved.status is ThreadStatus.RESOLVED
    assert resolved.is_active is False


def test_awaiting_confirmation_stays_active(store):
    thread = _request(store)
    awaiting = store.set_status(thread.id, ThreadStatus.AWAITING_CONFIRMATION)
    assert awaiting.is_active is True


def test_set_status_on_terminal_thread_raises(store):
    thread = _request(store)
    store.set_status(thread.id, ThreadStatus.CANCELLED)
    with pytest.raises(InvalidTransitionError):
        store.set_status(thread.id, ThreadStatus.OPEN)
    assert store.get_thread(thread.id).status is ThreadStatus.CANCELLED


def test_merge_context(store, clock):
    thread = store.create_thread("S1", ThreadCategory.GENERAL, GeneralContext(), "hello")
    clock.advance(seconds=30)

    merged = store.merge_context(thread.id, {"last_response": "Hi there!", "keywords": ["hello"]})

    assert merged.context.last_response == "Hi there!"
    assert merged.context.keywords == {"hello"}
    assert merged.updated_at == clock.now


def test_merge_context_rejects_fields_of_other_variants(store):
    thread = store.create_thread("S1", ThreadCategory.FAQ, FaqContext(faq_query="checkout?"), "checkout?")
    with pytest.raises(ValueError):
        store.merge_context(thread.id, {"item_name": "towels"})


def test_listings_are_in_creation_order_and_filtered(store):
    first = _request(store)
    second = store.create_thread("S1", ThreadCategory.FAQ, FaqContext(), "checkout?")
    third = store.create_thread("S1", ThreadCategory.GENERAL, GeneralContext(), "hi")
    other = _request(store, session="S2")
    store.set_status(second.id, ThreadStatus.RESOLVED)

    assert [t.id for t in store.list_by_session("S1")] == [first.id, second.id, third.id]
    assert [t.id for t in store.list_active("S1")] == [first.id, third.id]
    assert [t.id for t in store.list_by_session("S2")] == [other.id]
    assert store.list_by_session("unknown") == []


def test_evict_zero_removes_session_with_only_terminal_threads(store, clock):
    done = _request(store, session="S1")
    store.set_status(done.id, ThreadStatus.RESOLVED)
    kept = _request(store, session="S2")
    store.set_status(kept.id, ThreadStatus.AWAITING_CONFIRMATION)
    clock.advance(hours=1)

    evicted = store.evict(0)

    assert evicted == 1
    assert "S1" not in store.session_codes()
    assert store.list_by_session("S1") == []
    assert store.get_thread(done.id) is None
    assert [t.id for t in store.list_by_session("S2")] == [kept.id]


def test_evict_keeps_non_terminal_threads_regardless_of_age(store, clock):
    old_open = _request(store)
    old_closed = _request(store)
    store.set_status(old_closed.id, ThreadStatus.CANCELLED)
    clock.advance(hours=72)
    recent_closed = _request(store)
    store.set_status(recent_closed.id, ThreadStatus.RESOLVED)

    evicted = store.evict(24)

    assert evicted == 1
    remaining = [t.id for t in store.list_by_session("S1")]
    assert remaining == [old_open.id, recent_closed.id]


def test_evicted_thread_ids_become_unknown(store, clock):
    thread = _request(store)
    store.set_status(thread.id, ThreadStatus.RESOLVED)
    clock.advance(hours=2)
    store.evict(1)

    assert store.add_message(thread.id, "still there?", MessageRole.USER) is None


def test_overlapping_evict_returns_zero(store, clock):
    thread = _request(store)
    store.set_status(thread.id, ThreadStatus.RESOLVED)
    clock.advance(hours=2)

    store._evict_lock.acquire()
    try:
        assert store.evict(0) == 0
    finally:
        store._evict_lock.release()

    assert store.get_thread(thread.id) is not None
    assert store.evict(0) == 1


def test_stats(store):
    request = _request(store, session="S1")
    store.create_thread("S1", ThreadCategory.FAQ, FaqContext(), "checkout?")
    complaint = store.create_thread("S2", ThreadCategory.COMPLAINT, ComplaintContext(), "AC broken")
    store.set_status(request.id, ThreadStatus.AWAITING_CONFIRMATION)
    store.set_status(complaint.id, ThreadStatus.CANCELLED)

    stats = store.stats().to_dict()

    assert stats["total_sessions"] == 2
    assert stats["total_threads"] == 3
    assert stats["active_threads"] == 2
    assert stats["threads_by_category"] == {"request": 1, "faq": 1, "complaint": 1}
    assert stats["threads_by_status"] == {"awaiting_confirmation": 1, "open": 1, "cancelled": 1}


def test_concurrent_appends_are_not_lost(store):
    thread = _request(store)

    def append_many():
        for i in range(100):
            store.add_message(thread.id, f"msg {i}", MessageRole.USER)

    workers = [threading.Thread(target=append_many) for _ in range(4)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert len(store.get_thread(thread.id).messages) == 401
