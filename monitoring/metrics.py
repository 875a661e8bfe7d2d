"""
Core metrics and monitoring decorators for the thread router.

This module defines Prometheus metrics and decorators for tracking:
- Request latency and counts
- Error rates per component
- Dispatch and flow handler latency
- Thread creation, matching outcomes, match scores and status transitions
- Eviction sweeps
"""

import time
import inspect
import functools
import logging
from typing import Optional, Callable
from prometheus_client import Counter, Gauge, Histogram

# Configure logger
logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

REQUEST_LATENCY = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]  # Define buckets in seconds
)

# Error metrics
ERROR_COUNT = Counter(
    'error_total',
    'Total number of errors',
    ['type', 'location']  # type: e.g., 'classifier', 'responder', 'http'; location: specific component
)

# Dispatch metrics
DISPATCH_LATENCY = Histogram(
    'thread_dispatch_duration_seconds',
    'Time spent handling one guest message end to end',
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, float("inf")]
)

RESPONDER_LATENCY = Histogram(
    'responder_duration_seconds',
    'Time spent waiting for a flow handler',
    ['path'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, float("inf")]
)

# Thread metrics
THREADS_CREATED = Counter(
    'threads_created_total',
    'Threads created, by category',
    ['category']
)

THREAD_MATCHES = Counter(
    'thread_match_total',
    'Matching outcomes per intent',
    ['category', 'outcome']  # outcome: 'matched' or 'unmatched'
)

MATCH_SCORE = Histogram(
    'thread_match_score',
    'Best candidate score per matching attempt',
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.8, 1.0]
)

STATUS_TRANSITIONS = Counter(
    'thread_status_transitions_total',
    'Thread status transitions, by target status',
    ['status']
)

THREADS_EVICTED = Counter(
    'threads_evicted_total',
    'Threads removed by eviction sweeps'
)

ACTIVE_THREADS = Gauge(
    'threads_active',
    'Active threads after the last eviction sweep'
)

def track_latency(metric: Histogram, labels: Optional[Callable] = None) -> Callable:
    """
    A decorator factory that tracks the execution time of a function using a Prometheus Histogram.

    Works for plain functions and coroutine functions alike.

    Args:
        metric (Histogram): The Prometheus Histogram to record the timing in
        labels (Callable, optional): Function that receives the first positional argument
            (``self`` for methods) and returns the metric labels dictionary

    Returns:
        Callable: The decorated function
    """
    def observe(func: Callable, args: tuple, start_time: float) -> None:
        duration = time.time() - start_time
        if labels and args:
            metric.labels(**labels(args[0])).observe(duration)
        else:
            metric.observe(duration)
        logger.debug(
            f"Function {func.__name__} execution time: {duration:.2f} seconds",
            extra={'duration': duration, 'function': func.__name__}
        )

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return await func(*args, **kwargs)
                finally:
                    observe(func, args, start_time)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                observe(func, args, start_time)
        return wrapper
    return decorator

def track_errors(error_type: str, location: str) -> Callable:
    """
    A decorator factory that tracks errors occurring in a function.

    Args:
        error_type (str): Type of error (e.g., 'classifier', 'responder', 'http')
        location (str): Where the error occurred

    Returns:
        Callable: The decorated function

    Example:
        @track_errors('responder', 'remote_note')
        async def respond(self, thread_context, message):
            ...
    """
    def record(exc: Exception) -> None:
        ERROR_COUNT.labels(type=error_type, location=location).inc()
        logger.error(
            f"Error in {location} ({error_type}): {str(exc)}",
            extra={
                'error_type': error_type,
                'location': location,
                'error': str(exc)
            },
            exc_info=True
        )

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    record(e)
                    raise  # Re-raise the exception after tracking
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                record(e)
                raise  # Re-raise the exception after tracking
        return wrapper
    return decorator
