"""
pipelines/__init__.py

Responders (flow handlers) that produce the reply for a thread.

- base: BaseResponder interface with shared logging and metrics
- remote: HTTP-backed note-producing and answer-only responders

The router picks exactly one responder per turn, by the handling path of the
primary thread.
"""
