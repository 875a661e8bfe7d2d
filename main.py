""" main.py: FastAPI application entry point and runtime configuration.

This module builds the ASGI app, wires the thread router (store, classifier client,
responders and dispatcher) onto `app.state`, mounts the API router under /api, configures
CORS (Cross-Origin Resource Sharing), and exposes a Prometheus metrics endpoint. The
eviction sweeper is started and stopped with the application. When executed directly, it
starts a Uvicorn server using host/port values from configuration.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
import logging
from config import CONFIG

from api import threads as threads_router
from core.classifier import RemoteIntentClassifier
from core.dispatcher import ThreadDispatcher
from core.thread_store import ThreadStore
from pipelines.remote import RemoteResponder
from services.thread_sweeper import shutdown_thread_sweeper, start_thread_sweeper
from shared.models import HandlingPath
from version import __version__

# Get a logger instance for this module
logger = logging.getLogger(__name__)


def build_dispatcher(store: Optional[ThreadStore] = None) -> ThreadDispatcher:
    """
    Assemble the production dispatcher: in-memory store plus HTTP-backed collaborators.

    Args:
        store (Optional[ThreadStore]): Existing store to reuse; a fresh one by default.

    Returns:
        ThreadDispatcher: Dispatcher with a remote classifier and one remote responder
            per handling path.
    """
    return ThreadDispatcher(
        store=store or ThreadStore(),
        classifier=RemoteIntentClassifier(),
        responders={
            HandlingPath.NOTE: RemoteResponder(HandlingPath.NOTE),
            HandlingPath.ANSWER: RemoteResponder(HandlingPath.ANSWER),
        },
    )


def create_app(dispatcher: Optional[ThreadDispatcher] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        dispatcher (Optional[ThreadDispatcher]): Dispatcher to serve; built from
            configuration when omitted. Tests pass one with fake collaborators.

    Returns:
        FastAPI: The configured application. `app.state.dispatcher` and
            `app.state.store` hold the router state for the lifetime of the process.
    """
    app = FastAPI(title="Thread Router", version=__version__)

    dispatcher = dispatcher or build_dispatcher()
    app.state.dispatcher = dispatcher
    app.state.store = dispatcher.store

    app.include_router(threads_router.router, prefix="/api", tags=["Threads"])

    # Add Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    allow_origins = CONFIG.get('cors', {}).get('allow_origins', ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Start the eviction sweeper unless `threads.sweep_enabled` is false."""
        if CONFIG.get('threads', {}).get('sweep_enabled', True):
            start_thread_sweeper(app, app.state.dispatcher)
        else:
            logger.info("[startup] Thread sweeper disabled by configuration")

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        shutdown_thread_sweeper(app)

    logger.info("Thread router app created (version %s)", __version__)
    return app


app = create_app()

# The uvicorn server is used to run the FastAPI application.
if __name__ == '__main__':
    import uvicorn
    logger.info("[__main__] Starting Uvicorn server for main.py\n")
    uvicorn.run(
        app,
        host=CONFIG.get('server', {}).get('host', '0.0.0.0'),
        port=CONFIG.get('server', {}).get('port', 8080)
    )
