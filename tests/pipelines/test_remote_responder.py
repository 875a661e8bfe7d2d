"""
Tests for `pipelines/remote.py` and the `BaseResponder` contract.

We mock `post_json` so no flow service is contacted.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from conftest import make_classification, towel_request
from pipelines.remote import RemoteResponder, parse_responder_result
from shared.flow_client import FlowClientError
from shared.models import (
    HandlingPath,
    MessageRole,
    RequestContext,
    Thread,
    ThreadCategory,
    ThreadContext,
    ThreadMessage,
)


def _thread_context() -> ThreadContext:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    message = ThreadMessage("msg_1", "Two towels please", MessageRole.USER, now)
    thread = Thread(
        id="thread_1",
        session_code="S1",
        category=ThreadCategory.REQUEST,
        context=RequestContext(keywords={"towels"}, item_name="towels"),
        created_at=now,
        updated_at=now,
        messages=[message],
    )
    return ThreadContext(
        thread=thread,
        is_new_thread=True,
        language="en",
        handling_path=HandlingPath.NOTE,
        classification=make_classification(towel_request()),
        recent_messages=[message],
    )


def test_parse_responder_result():
    result = parse_responder_result({"reply": "On the way", "action_record": {"note_id": "n-1"}})
    assert result.reply == "On the way"
    assert result.action_created is True

    no_action = parse_responder_result({"reply": "Sure", "action_record": None})
    assert no_action.action_created is False

    empty_action = parse_responder_result({"reply": "Sure", "action_record": {}})
    assert empty_action.action_record is None


@pytest.mark.parametrize("payload", [
    {},
    {"reply": ""},
    {"reply": 42},
    {"reply": "ok", "action_record": "note"},
])
def test_parse_responder_result_rejects_malformed_payloads(payload):
    with pytest.raises(FlowClientError):
        parse_responder_result(payload)


def test_remote_responder_uses_configured_endpoints():
    note = RemoteResponder(HandlingPath.NOTE, base_url="http://notes:9100")
    answer = RemoteResponder(HandlingPath.ANSWER)
    assert note.get_pipeline_name() == "remote_note"
    assert answer.get_pipeline_name() == "remote_answer"
    assert answer._base_url == answer.config["responders"]["answer_base_url"]
    assert answer._timeout_s == float(answer.config["responders"]["timeout_seconds"])


@patch("pipelines.remote.post_json")
def test_remote_responder_posts_thread_context(mock_post_json):
    mock_post_json.return_value = {"reply": "Two towels are on their way.", "action_record": {"note_id": "n-9"}}
    responder = RemoteResponder(HandlingPath.NOTE, base_url="http://notes:9100/", timeout_s=3.0)

    result = asyncio.run(responder.respond(_thread_context(), "Two towels please"))

    url, payload, timeout_s = mock_post_json.call_args.args
    assert url == "http://notes:9100/api/respond"
    assert timeout_s == 3.0
    assert payload["message"] == "Two towels please"
    assert payload["thread_context"]["thread"]["id"] == "thread_1"
    assert payload["thread_context"]["handling_path"] == "note"
    assert payload["thread_context"]["recent_messages"][0]["content"] == "Two towels please"
    assert result.action_record == {"note_id": "n-9"}


@patch("pipelines.remote.post_json")
def test_remote_responder_propagates_flow_errors(mock_post_json):
    mock_post_json.side_effect = FlowClientError("HTTP 503 from http://notes:9100/api/respond")
    responder = RemoteResponder(HandlingPath.NOTE, base_url="http://notes:9100")

    with pytest.raises(FlowClientError):
        asyncio.run(responder.respond(_thread_context(), "Two towels please"))


def test_missing_base_url_is_a_flow_error():
    responder = RemoteResponder(HandlingPath.ANSWER, base_url="")
    with pytest.raises(FlowClientError):
        asyncio.run(responder.respond(_thread_context(), "hello"))
