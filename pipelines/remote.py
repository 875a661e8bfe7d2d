"""
HTTP-backed responders.

The note-producing and answer-only flows run as separate services. Both receive the same
request body, `{"message": ..., "thread_context": {...}}`, and reply with
`{"reply": str, "action_record": object | null}`. Only the note-producing flow is
expected to return an action record.
"""

import asyncio
from typing import Any, Dict, Optional

from pipelines.base import BaseResponder
from shared.flow_client import FlowClientError, build_url, post_json
from shared.models import HandlingPath, ResponderResult, ThreadContext

RESPOND_PATH = '/api/respond'

def parse_responder_result(payload: Dict[str, Any]) -> ResponderResult:
    """
    Validate a flow service reply.

    Raises:
        FlowClientError: If the reply text is missing or empty, or the action record is
            not a JSON object.
    """
    reply = payload.get('reply')
    if not isinstance(reply, str) or not reply.strip():
        raise FlowClientError("Flow reply is missing a non-empty 'reply' field")
    action_record = payload.get('action_record')
    if action_record is not None and not isinstance(action_record, dict):
        raise FlowClientError("Flow 'action_record' must be an object or null")
    return ResponderResult(reply=reply, action_record=action_record or None)


class RemoteResponder(BaseResponder):
    """
    Responder that delegates to a flow service over HTTP.

    Args:
        handling_path (HandlingPath): Path this responder serves; selects the configured
            base URL (`responders.note_base_url` or `responders.answer_base_url`).
        base_url (Optional[str]): Explicit base URL, overriding configuration.
        timeout_s (Optional[float]): Socket timeout, overriding `responders.timeout_seconds`.
    """

    def __init__(
        self,
        handling_path: HandlingPath,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        self.handling_path = handling_path
        self._base_url = base_url
        self._timeout_s = timeout_s
        super().__init__()

    def setup(self) -> None:
        responders_cfg = self.config.get('responders', {}) or {}
        if self._base_url is None:
            self._base_url = responders_cfg.get(f"{self.handling_path.value}_base_url")
        if self._timeout_s is None:
            self._timeout_s = float(responders_cfg.get('timeout_seconds', 15.0))
        self.logger.info(f"[{self.get_pipeline_name()}] Using flow service at {self._base_url}")

    def get_pipeline_name(self) -> str:
        return f"remote_{self.handling_path.value}"

    async def _respond_internal(self, thread_context: ThreadContext, message: str) -> ResponderResult:
        url = build_url(self._base_url, RESPOND_PATH)
        payload = {'message': message, 'thread_context': thread_context.to_dict()}
        response = await asyncio.to_thread(post_json, url, payload, self._timeout_s)
        return parse_responder_result(response)
