"""Session execution controller for Fitness Pal.

This module provides the SessionController class which owns one
generation session: it opens the read loop, feeds chunks through the
frame decoder and the event dispatcher, pauses when the backend asks for
feedback, resumes on the feedback endpoint under the same session id, and
runs termination handling when the stream completes.
"""

from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import uuid

from fitness_pal.config.models import EndpointConfig, GenerationKind, StreamConfig
from fitness_pal.execution.event_dispatcher import (
    DispatchOutcome,
    EventDispatcher,
    StreamState,
)
from fitness_pal.execution.frame_decoder import FrameDecoder
from fitness_pal.execution.result_parser import (
    parse_exercises,
    parse_workouts,
    reconstruct_result_from_buffer,
)
from fitness_pal.execution.transport import StreamTransport
from fitness_pal.state.generation_store import GenerationStore
from fitness_pal.state.schema import (
    GenerationResult,
    Message,
    StoreEvent,
    StoreEventKind,
)
from fitness_pal.utils.exceptions import (
    ConfigurationError,
    SessionStateError,
    TransportError,
    ValidationError,
)
from fitness_pal.utils.logging import SessionLogger, get_logger

if TYPE_CHECKING:
    from fitness_pal.persistence.reconciler import PersistenceReconciler

logger = get_logger(__name__)


class SessionStatus(Enum):
    """Session lifecycle states."""

    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_FEEDBACK = "awaiting_feedback"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {
    SessionStatus.COMPLETED,
    SessionStatus.ERRORED,
    SessionStatus.CANCELLED,
}

LIVE_STATUSES = {SessionStatus.STREAMING, SessionStatus.AWAITING_FEEDBACK}

_TRANSITIONS = {
    SessionStatus.IDLE: {SessionStatus.STREAMING, SessionStatus.CANCELLED},
    SessionStatus.STREAMING: {
        SessionStatus.AWAITING_FEEDBACK,
        SessionStatus.COMPLETED,
        SessionStatus.ERRORED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.AWAITING_FEEDBACK: {SessionStatus.STREAMING, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.ERRORED: set(),
    SessionStatus.CANCELLED: set(),
}


class EventType(Enum):
    """Types of execution events."""

    STATE_CHANGE = "state_change"
    FEEDBACK_REQUESTED = "feedback_requested"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    RESULT_RECOVERED = "result_recovered"
    SESSION_COMPLETE = "session_complete"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class ExecutionEvent:
    """Represents an execution event in the session."""

    type: EventType
    timestamp: datetime
    data: Dict[str, Any]
    context: Optional[Dict[str, Any]] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class SessionStatistics:
    """Session statistics."""

    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    chunks_received: int = 0
    frames_applied: int = 0
    frames_ignored: int = 0
    records_discarded: int = 0
    feedback_rounds: int = 0
    error_count: int = 0

    @property
    def duration(self) -> timedelta:
        """Get session duration."""
        end = self.end_time or datetime.now()
        return end - self.start_time

    @property
    def duration_formatted(self) -> str:
        """Get formatted duration string."""
        duration = self.duration
        hours, remainder = divmod(duration.seconds, 3600)
        minutes, seconds = divmod(remainder, 60)

        if hours > 0:
            return f"{hours}h {minutes}m"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"


class SessionController:
    """State machine for a single generation session.

    The controller owns the authoritative token buffer (in its
    ``StreamState``) and is the only component that changes session
    status. Frames are applied strictly in arrival order by one read loop
    at a time; resuming after feedback opens a new loop bound to the same
    session id without resetting anything accumulated so far.
    """

    def __init__(
        self,
        session_id: str,
        conversation_id: str,
        message_id: str,
        store: GenerationStore,
        transport: StreamTransport,
        endpoint: EndpointConfig,
        *,
        kind: GenerationKind = GenerationKind.WORKOUT,
        config: Optional[StreamConfig] = None,
        reconciler: Optional["PersistenceReconciler"] = None,
        user_id: Optional[str] = None,
    ):
        """Initialize the session controller.

        Args:
            session_id: Freshly generated, immutable session identifier.
            conversation_id: Conversation the session writes into.
            message_id: Assistant message receiving streamed content.
            store: Generation store to mutate.
            transport: HTTP stream transport.
            endpoint: Start and feedback paths for this generation kind.
            kind: Generation kind, for logging and payloads.
            config: Stream configuration (prefix, sentinel, messages).
            reconciler: Receives the final assistant message on completion.
            user_id: Optional user id forwarded to the backend.
        """
        self.session_id = session_id
        self.conversation_id = conversation_id
        self.message_id = message_id
        self.store = store
        self.transport = transport
        self.endpoint = endpoint
        self.kind = GenerationKind(kind)
        self.config = config or StreamConfig()
        self.reconciler = reconciler
        self.user_id = user_id

        self.created_at = datetime.now()
        self.status = SessionStatus.IDLE
        self.error: Optional[str] = None
        self.feedback_history: List[str] = []
        self.state = StreamState(
            session_id=session_id,
            conversation_id=conversation_id,
            message_id=message_id,
        )
        self.statistics = SessionStatistics(
            session_id=session_id, start_time=self.created_at
        )
        self.event_history: List[ExecutionEvent] = []

        self._dispatcher = EventDispatcher(store)
        self._cancelled = False
        self._session_log = SessionLogger(session_id)

        logger.info(
            f"SessionController initialized for session {session_id} "
            f"({self.kind.value}, conversation {conversation_id})"
        )

    # Read-only views

    @property
    def token_buffer(self) -> str:
        return self.state.token_buffer

    @property
    def status_message(self) -> Optional[str]:
        return self.state.status_message

    @property
    def feedback_prompt(self) -> Any:
        return self.state.feedback_prompt

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def result(self) -> GenerationResult:
        return self.store.result_for(self.session_id)

    # Lifecycle

    async def start(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
        flags: Optional[Dict[str, Any]] = None,
    ) -> SessionStatus:
        """Open the initial read loop.

        Args:
            prompt: User prompt for the generation.
            context: Optional structured context forwarded to the backend.
            flags: Optional backend flags.

        Returns:
            Status once the loop has returned control (paused, completed,
            errored or cancelled).

        Raises:
            SessionStateError: If the session is not idle.
        """
        if self.status != SessionStatus.IDLE:
            raise SessionStateError(
                "Session can only be started once",
                session_id=self.session_id,
                status=self.status.value,
            )

        payload: Dict[str, Any] = {"session_id": self.session_id, "prompt": prompt}
        if context is not None:
            payload["context"] = context
        if flags is not None:
            payload["flags"] = flags
        if self.user_id is not None:
            payload["user_id"] = self.user_id

        logger.info(f"Starting session {self.session_id}")
        self._transition(SessionStatus.STREAMING)
        return await self._run(self.endpoint.start, payload)

    async def resume(self, feedback: str) -> SessionStatus:
        """Submit feedback and open a new read loop for the same session.

        Accumulated tokens, steps, sources and results are kept; new
        output continues after them.

        Raises:
            SessionStateError: If the session is not awaiting feedback.
            ConfigurationError: If this generation kind has no feedback endpoint.
        """
        if self.status != SessionStatus.AWAITING_FEEDBACK:
            raise SessionStateError(
                "Feedback can only be submitted to a paused session",
                session_id=self.session_id,
                status=self.status.value,
            )
        if not self.endpoint.feedback:
            raise ConfigurationError(
                f"No feedback endpoint configured for {self.kind.value} generation",
                details={"kind": self.kind.value},
            )

        self.feedback_history.append(feedback)
        self.statistics.feedback_rounds += 1
        self._session_log.log_feedback(feedback)
        self._emit_event(EventType.FEEDBACK_SUBMITTED, {"feedback": feedback})

        self.state.feedback_prompt = None
        self._transition(SessionStatus.STREAMING)
        return await self._run(
            self.endpoint.feedback,
            {"session_id": self.session_id, "feedback": feedback},
        )

    def cancel(self, reason: str = "discarded") -> bool:
        """Stop applying output from this session.

        Cancellation is cooperative: an open read loop notices the flag
        before its next frame and exits without touching the store.

        Returns:
            True if the session was cancelled, False if already terminal.
        """
        if self.status in TERMINAL_STATUSES:
            return False

        self._cancelled = True
        self._transition(SessionStatus.CANCELLED)
        self.statistics.end_time = datetime.now()
        self._emit_event(EventType.CANCELLED, {"reason": reason})
        logger.info(f"Session {self.session_id} cancelled: {reason}")

        try:
            self.store.update_message(
                self.conversation_id,
                self.message_id,
                loading=False,
                session_id=self.session_id,
            )
        except ValidationError:
            # Conversation already removed
            pass
        return True

    # Read loop

    async def _run(self, path: str, payload: Dict[str, Any]) -> SessionStatus:
        decoder = FrameDecoder(self.config.data_prefix, self.config.done_sentinel)
        outcome = DispatchOutcome.CONTINUE

        try:
            async with aclosing(self.transport.stream(path, payload)) as chunks:
                async for chunk in chunks:
                    if self._cancelled:
                        break
                    self.statistics.chunks_received += 1
                    outcome = self._dispatch_all(decoder.feed(chunk))
                    if outcome != DispatchOutcome.CONTINUE or self._cancelled:
                        break
                else:
                    outcome = self._dispatch_all(decoder.flush())
        except TransportError as e:
            self._record_decoder(decoder)
            if not self._cancelled:
                self._fail(str(e), e)
            return self.status
        except Exception as e:
            self._record_decoder(decoder)
            logger.error(
                f"Unexpected error in session {self.session_id} read loop: {e}",
                exc_info=True,
            )
            if not self._cancelled:
                self._fail(f"{type(e).__name__}: {e}", e)
            return self.status

        self._record_decoder(decoder)

        if self._cancelled:
            logger.debug(f"Read loop for cancelled session {self.session_id} exited")
            return self.status

        if outcome == DispatchOutcome.PAUSE:
            self._pause()
        else:
            if outcome != DispatchOutcome.TERMINATE:
                logger.info(
                    f"Stream for session {self.session_id} ended without a terminal frame, completing"
                )
            self._finalize()

        return self.status

    def _dispatch_all(self, frames: List[Any]) -> DispatchOutcome:
        for value in frames:
            if self._cancelled:
                return DispatchOutcome.CONTINUE
            outcome = self._dispatcher.dispatch(value, self.state)
            if isinstance(value, dict):
                self._session_log.log_frame(
                    str(value.get("type", value.get("kind", "?"))), value.get("content")
                )
            if outcome != DispatchOutcome.CONTINUE:
                return outcome
        return DispatchOutcome.CONTINUE

    def _record_decoder(self, decoder: FrameDecoder) -> None:
        self.statistics.frames_applied = self.state.frames_applied
        self.statistics.frames_ignored = self.state.frames_ignored
        self.statistics.records_discarded += decoder.records_discarded

    # Outcomes

    def _pause(self) -> None:
        self._transition(SessionStatus.AWAITING_FEEDBACK)
        self._emit_event(
            EventType.FEEDBACK_REQUESTED, {"prompt": self.state.feedback_prompt}
        )
        self.store.publish(
            StoreEvent(
                kind=StoreEventKind.STATUS_UPDATED,
                conversation_id=self.conversation_id,
                session_id=self.session_id,
                payload={
                    "status": self.status.value,
                    "feedback_prompt": self.state.feedback_prompt,
                },
            )
        )

    def _finalize(self) -> None:
        """Termination handling for ``complete``/``done`` or end of body."""
        if not self.state.saw_structured_frame:
            data = reconstruct_result_from_buffer(self.state.token_buffer)
            if data is not None:
                self._apply_recovered_result(data)

        final_message: Optional[Message] = None
        try:
            self.store.update_message(
                self.conversation_id,
                self.message_id,
                loading=False,
                session_id=self.session_id,
            )
            final_message = self.store.get_message(self.conversation_id, self.message_id)
        except ValidationError:
            logger.warning(
                f"Session {self.session_id} completed after its conversation was removed"
            )
        self._transition(SessionStatus.COMPLETED)
        self.statistics.end_time = datetime.now()
        self._emit_event(
            EventType.SESSION_COMPLETE,
            {
                "content_length": len(self.state.token_buffer),
                "duration": self.statistics.duration_formatted,
            },
        )
        logger.info(
            f"Session {self.session_id} completed in {self.statistics.duration_formatted} "
            f"({self.state.frames_applied} frames)"
        )

        if self.reconciler is not None and final_message is not None:
            self.reconciler.persist_message(self.conversation_id, final_message)

    def _apply_recovered_result(self, data: Dict[str, Any]) -> None:
        if isinstance(data.get("workouts"), list):
            self.store.replace_workouts(
                self.session_id,
                parse_workouts(data["workouts"]),
                conversation_id=self.conversation_id,
            )
        if isinstance(data.get("exercises"), list):
            self.store.replace_exercises(
                self.session_id,
                parse_exercises(data["exercises"]),
                conversation_id=self.conversation_id,
            )
        if isinstance(data.get("reasoning"), str):
            self.store.set_reasoning(
                self.session_id, data["reasoning"], conversation_id=self.conversation_id
            )
        self._emit_event(
            EventType.RESULT_RECOVERED,
            {"fields": [k for k in ("workouts", "exercises", "reasoning") if k in data]},
        )

    def _fail(self, error: str, exception: Optional[Exception] = None) -> None:
        """Move to ``Errored`` keeping everything accumulated so far."""
        self.error = error
        self.statistics.error_count += 1
        self.statistics.end_time = datetime.now()
        self.state.status_message = self.config.error_message
        self._session_log.log_error(error, exception)
        self._transition(SessionStatus.ERRORED)

        try:
            self.store.update_message(
                self.conversation_id,
                self.message_id,
                loading=False,
                error=self.config.error_message,
                session_id=self.session_id,
            )
        except ValidationError:
            logger.warning(
                f"Session {self.session_id} failed after its conversation was removed"
            )

        self.store.publish(
            StoreEvent(
                kind=StoreEventKind.ERROR_REPORTED,
                conversation_id=self.conversation_id,
                session_id=self.session_id,
                payload={
                    "error": error,
                    "message": self.config.error_message,
                    "fatal": True,
                },
            )
        )
        self._emit_event(
            EventType.ERROR,
            {
                "error": error,
                "error_type": type(exception).__name__ if exception else None,
            },
        )

    def _transition(self, new_status: SessionStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise SessionStateError(
                f"Invalid transition {self.status.value} -> {new_status.value}",
                session_id=self.session_id,
                status=self.status.value,
            )
        old_status = self.status
        self.status = new_status
        self._session_log.log_transition(old_status.value, new_status.value)
        self._emit_event(
            EventType.STATE_CHANGE,
            {"old_state": old_status.value, "new_state": new_status.value},
        )

    def _emit_event(self, event_type: EventType, data: Dict[str, Any]) -> ExecutionEvent:
        """Record an execution event."""
        event = ExecutionEvent(
            type=event_type,
            timestamp=datetime.now(),
            data=data,
            context={
                "session_id": self.session_id,
                "conversation_id": self.conversation_id,
                "session_state": self.status.value,
            },
        )
        self.event_history.append(event)
        return event

    def get_execution_timeline(self) -> List[ExecutionEvent]:
        """Get complete timeline of session execution events.

        Returns:
            List of execution events in chronological order
        """
        return self.event_history.copy()

    def get_session_statistics(self) -> SessionStatistics:
        return self.statistics
