"""
Base class for all responders (flow handlers) used by the thread router.

A responder produces the guest-facing reply for the primary thread of a turn. The
router never decides what to say; it only hands the responder a `ThreadContext` and
folds the returned `ResponderResult` back into the thread.
"""

from abc import ABC, abstractmethod
import logging
from monitoring.metrics import track_latency, track_errors, RESPONDER_LATENCY
from shared.models import HandlingPath, ResponderResult, ThreadContext
from shared.utils import truncate_message_for_logging
from config import CONFIG

logger = logging.getLogger(__name__)

class BaseResponder(ABC):
    """
    Abstract base class for flow handlers.

    This class defines the interface that all responders implement and provides shared
    functionality for setup, logging, configuration access, and metrics instrumentation.
    Concrete responders override `setup`, `get_pipeline_name`, and `_respond_internal`.
    Each responder serves exactly one handling path.
    """

    handling_path: HandlingPath = HandlingPath.ANSWER

    def __init__(self):
        """
        Initialize common responder state and invoke responder-specific setup.

        The constructor configures a namespaced logger and keeps a reference to the global
        configuration so subclasses can read their endpoints and timeouts without
        re-reading configuration files.
        """
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.config = CONFIG

        self.setup()

    def setup(self) -> None:
        """
        Set up the responder with necessary resources.

        Responders without resources of their own can rely on this no-op.
        """

    @abstractmethod
    def get_pipeline_name(self) -> str:
        """
        Get the name of the responder.

        Returns:
            str: The responder's name for use in logging and metrics.
        """

    @track_latency(RESPONDER_LATENCY, lambda self: {'path': self.handling_path.value})
    @track_errors('responder', 'responder.respond')
    async def respond(self, thread_context: ThreadContext, message: str) -> ResponderResult:
        """
        Produce the reply for the primary thread of a turn.

        Args:
            thread_context (ThreadContext): Snapshot of the primary thread and turn metadata.
            message (str): The guest message being answered.

        Returns:
            ResponderResult: The reply and, for note-producing flows, the action record if one
            was created.

        Raises:
            Exception: Any failure of the flow; the dispatcher turns it into a fallback reply.
        """
        thread_id = thread_context.thread.id
        self._log_processing_start(message, thread_id)
        try:
            result = await self._respond_internal(thread_context, message)
        except Exception:
            self._log_processing_end(thread_id, success=False)
            raise
        self._log_processing_end(thread_id, success=True)
        return result

    @abstractmethod
    async def _respond_internal(self, thread_context: ThreadContext, message: str) -> ResponderResult:
        """
        Internal reply implementation.

        Args:
            thread_context (ThreadContext): Snapshot of the primary thread and turn metadata.
            message (str): The guest message being answered.

        Returns:
            ResponderResult: The reply and optional action record.
        """

    def _log_processing_start(self, message: str, thread_id: str) -> None:
        pipeline_name = self.get_pipeline_name()
        self.logger.info(
            f"[{pipeline_name}] Starting reply for thread {thread_id}: "
            f"'{truncate_message_for_logging(message, 50)}'"
        )

    def _log_processing_end(self, thread_id: str, success: bool = True) -> None:
        pipeline_name = self.get_pipeline_name()
        status = "completed successfully" if success else "failed"
        self.logger.info(f"[{pipeline_name}] Reply {status} for thread {thread_id}")
