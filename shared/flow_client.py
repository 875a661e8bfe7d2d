"""
JSON-over-HTTP client for the router's external collaborators (minimal, dependency-free).

The intent classifier and the two flow handlers (note-producing and answer-only) run as
separate services. This module issues an HTTP POST with a JSON body to one of them and
returns the parsed JSON object on success, using only Python's standard library. It
enforces a per-call timeout so a slow collaborator cannot hold a guest turn forever, and
it keeps a small error taxonomy so callers can tell timeouts apart from non-200
responses and malformed payloads. An optional bearer token is read from the
FLOW_SERVICE_TOKEN environment variable.
"""

from __future__ import annotations

import json
import socket
from typing import Any, Dict, Optional
from urllib import error as urlerror
from urllib import request as urlrequest

from config import ENV


class FlowClientError(Exception):
    """
    Base exception for collaborator client errors.

    Raised for non-timeout failures such as non-200 HTTP responses, invalid JSON payloads,
    or a missing endpoint configuration.
    """


class FlowClientTimeoutError(FlowClientError):
    """
    Timeout-specific client error.

    Raised when the underlying network operation exceeds the configured timeout.
    """


def build_url(base_url: Optional[str], path: str) -> str:
    """
    Join a configured base URL and an endpoint path.

    Raises:
        FlowClientError: If the base URL is missing or blank.
    """
    if not isinstance(base_url, str) or not base_url.strip():
        raise FlowClientError(f"No base URL configured for {path}")
    return f"{base_url.strip().rstrip('/')}/{path.lstrip('/')}"


def post_json(
    url: str,
    payload: Dict[str, Any],
    timeout_s: float = 5.0,
    token: Optional[str] = None,
) -> Dict[str, Any]:
    """
    POST a JSON payload and return the parsed JSON object.

    Args:
        url (str): Fully qualified endpoint URL.
        payload (Dict[str, Any]): JSON-serializable request body.
        timeout_s (float): Socket timeout in seconds.
        token (Optional[str]): Bearer token; defaults to FLOW_SERVICE_TOKEN when unset.

    Returns:
        Dict[str, Any]: Parsed JSON object returned on HTTP 200.

    Raises:
        FlowClientTimeoutError: When the request exceeds the given timeout.
        FlowClientError: For network errors, non-200 responses, or bodies that are not a JSON object.
    """
    data = json.dumps(payload, default=str).encode("utf-8")

    req = urlrequest.Request(url, data=data, method="POST")
    req.add_header("Content-Type", "application/json")
    bearer = token if token is not None else ENV.get("FLOW_SERVICE_TOKEN")
    if bearer:
        req.add_header("Authorization", f"Bearer {bearer}")

    try:
        with urlrequest.urlopen(req, timeout=timeout_s) as resp:
            status = getattr(resp, "status", 200)
            body = resp.read().decode("utf-8", errors="replace")
    except socket.timeout as exc:
        raise FlowClientTimeoutError(f"Request to {url} timed out after {timeout_s}s") from exc
    except urlerror.HTTPError as exc:
        raise FlowClientError(f"HTTP {exc.code} from {url}") from exc
    except urlerror.URLError as exc:
        # URLError may wrap socket.timeout or other transient network errors
        if isinstance(exc.reason, socket.timeout):
            raise FlowClientTimeoutError(f"Request to {url} timed out after {timeout_s}s") from exc
        raise FlowClientError(f"Network error calling {url}: {exc}") from exc

    if status != 200:
        raise FlowClientError(f"HTTP {status} from {url}: {body[:200]}")
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise FlowClientError(f"Invalid JSON from {url}: {exc}: body={body[:200]}") from exc
    if not isinstance(parsed, dict):
        raise FlowClientError(f"Expected a JSON object from {url}, got {type(parsed).__name__}")
    return parsed
