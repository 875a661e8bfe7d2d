"""
shared/__init__.py

Shared utilities and models used across multiple modules.

This package contains common functionality that is used by multiple
components of the thread router:
- models: Thread dataclasses, enums, and typed classifier payloads
- utils: Identifier generation, clock, and localized fallback replies
- flow_client: JSON-over-HTTP client for the external classifier and flow services
"""
