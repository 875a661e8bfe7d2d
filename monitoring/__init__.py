"""
Monitoring package initializer.

This package exposes Prometheus metrics and helper decorators for tracking the
thread router's request handling, matching behaviour, and thread lifecycle.
"""

from .metrics import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    ERROR_COUNT,
    DISPATCH_LATENCY,
    RESPONDER_LATENCY,
    THREADS_CREATED,
    THREAD_MATCHES,
    MATCH_SCORE,
    STATUS_TRANSITIONS,
    THREADS_EVICTED,
    ACTIVE_THREADS,
    track_latency,
    track_errors,
)

__all__ = [
    'REQUEST_COUNT',
    'REQUEST_LATENCY',
    'ERROR_COUNT',
    'DISPATCH_LATENCY',
    'RESPONDER_LATENCY',
    'THREADS_CREATED',
    'THREAD_MATCHES',
    'MATCH_SCORE',
    'STATUS_TRANSITIONS',
    'THREADS_EVICTED',
    'ACTIVE_THREADS',
    'track_latency',
    'track_errors',
]
