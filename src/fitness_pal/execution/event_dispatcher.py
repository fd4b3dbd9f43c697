"""Event dispatch for generation streams.

This module maps one decoded frame onto exactly one state transition.
Mutations land in the ``GenerationStore`` (which publishes them to
observers) and in the session's ``StreamState``; session status changes
are signalled back to the controller through the returned
``DispatchOutcome``. The dispatcher never performs I/O.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from fitness_pal.execution.result_parser import (
    parse_exercises,
    parse_structured_content,
    parse_workouts,
)
from fitness_pal.state.generation_store import GenerationStore
from fitness_pal.state.schema import StoreEvent, StoreEventKind
from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)


class FrameKind(str, Enum):
    """Frame kinds understood by the dispatcher."""

    TOKEN = "token"
    PROGRESS = "progress"
    RESULT = "result"
    REASONING = "reasoning"
    AWAIT_USER_FEEDBACK = "await_user_feedback"
    UPDATE = "update"
    COMPLETE = "complete"
    DONE = "done"

    # Knowledge-base chat protocol
    ANSWER = "answer"
    RESPONSE = "response"
    STEP = "step"
    SOURCE = "source"
    SOURCES_SUMMARY = "sources_summary"
    ERROR = "error"


TOKEN_KINDS = {FrameKind.TOKEN, FrameKind.ANSWER, FrameKind.RESPONSE}
TERMINAL_KINDS = {FrameKind.COMPLETE, FrameKind.DONE}
NOOP_KINDS = {FrameKind.UPDATE, FrameKind.SOURCES_SUMMARY}


class DispatchOutcome(Enum):
    """What the read loop should do after a frame."""

    CONTINUE = "continue"
    PAUSE = "pause"
    TERMINATE = "terminate"


@dataclass
class Frame:
    """A decoded record with its kind resolved."""

    kind: Optional[FrameKind]
    content: Any
    raw: Dict[str, Any]

    @classmethod
    def from_value(cls, value: Any) -> Optional["Frame"]:
        """Build a frame from a decoded JSON value.

        Returns None for values that are not frames at all (non-objects,
        or objects with neither a kind nor string content). A frame whose
        kind is not recognised gets ``kind=None``.
        """
        if not isinstance(value, dict):
            return None

        declared = value.get("type", value.get("kind"))
        content = value.get("content")

        if declared is None:
            # Legacy records carry bare content without a type
            if isinstance(content, str) and content:
                return cls(kind=FrameKind.TOKEN, content=content, raw=value)
            return None

        try:
            kind = FrameKind(str(declared).lower())
        except ValueError:
            kind = None
        return cls(kind=kind, content=content, raw=value)


@dataclass
class StreamState:
    """Mutable per-session stream state owned by the session controller.

    ``token_buffer`` is the single authoritative accumulation of token
    output for the session; the store only ever receives copies of it.
    """

    session_id: str
    conversation_id: str
    message_id: str
    token_buffer: str = ""
    status_message: Optional[str] = None
    feedback_prompt: Any = None
    steps: List[str] = field(default_factory=list)
    sources: List[Any] = field(default_factory=list)
    backend_errors: List[str] = field(default_factory=list)
    saw_structured_frame: bool = False
    content_started: bool = False
    frames_applied: int = 0
    frames_ignored: int = 0


class EventDispatcher:
    """Applies decoded frames to the generation store."""

    def __init__(self, store: GenerationStore):
        """Initialize the dispatcher.

        Args:
            store: Store receiving message and result mutations.
        """
        self.store = store

    def dispatch(self, value: Any, state: StreamState) -> DispatchOutcome:
        """Apply one decoded value.

        Args:
            value: A JSON value yielded by the frame decoder.
            state: Stream state of the session the value belongs to.

        Returns:
            Whether the read loop should continue, pause, or terminate.
        """
        frame = Frame.from_value(value)
        if frame is None or frame.kind is None:
            state.frames_ignored += 1
            logger.debug(f"Ignoring unrecognised frame: {str(value)[:80]}")
            return DispatchOutcome.CONTINUE

        kind = frame.kind
        state.frames_applied += 1

        if kind in TOKEN_KINDS:
            self._apply_token(frame, state)
        elif kind == FrameKind.PROGRESS:
            self._apply_progress(frame, state)
        elif kind == FrameKind.RESULT:
            self._apply_result(frame, state)
        elif kind == FrameKind.REASONING:
            self._apply_reasoning(frame, state)
        elif kind == FrameKind.STEP:
            self._apply_step(frame, state)
        elif kind == FrameKind.SOURCE:
            self._apply_source(frame, state)
        elif kind == FrameKind.ERROR:
            self._apply_backend_error(frame, state)
        elif kind == FrameKind.AWAIT_USER_FEEDBACK:
            state.feedback_prompt = frame.content
            logger.info(f"Session {state.session_id} paused for user feedback")
            return DispatchOutcome.PAUSE
        elif kind in TERMINAL_KINDS:
            logger.debug(f"Session {state.session_id} received {kind.value}")
            return DispatchOutcome.TERMINATE
        elif kind in NOOP_KINDS:
            pass

        return DispatchOutcome.CONTINUE

    def _apply_token(self, frame: Frame, state: StreamState) -> None:
        if frame.content is None:
            return
        text = frame.content if isinstance(frame.content, str) else json.dumps(frame.content)
        state.token_buffer += text
        state.content_started = True
        self.store.update_message(
            state.conversation_id,
            state.message_id,
            content=state.token_buffer,
            loading=False,
            session_id=state.session_id,
        )

    def _apply_progress(self, frame: Frame, state: StreamState) -> None:
        state.status_message = None if frame.content is None else str(frame.content)
        self.store.publish(
            StoreEvent(
                kind=StoreEventKind.STATUS_UPDATED,
                conversation_id=state.conversation_id,
                session_id=state.session_id,
                payload={"status_message": state.status_message},
            )
        )

    def _apply_result(self, frame: Frame, state: StreamState) -> None:
        data = parse_structured_content(frame.content)
        state.saw_structured_frame = True
        if data is None:
            logger.warning(
                f"Session {state.session_id}: result frame content is not a JSON object"
            )
            return

        if isinstance(data.get("workouts"), list):
            self.store.replace_workouts(
                state.session_id,
                parse_workouts(data["workouts"]),
                conversation_id=state.conversation_id,
            )
        if isinstance(data.get("exercises"), list):
            self.store.replace_exercises(
                state.session_id,
                parse_exercises(data["exercises"]),
                conversation_id=state.conversation_id,
            )
        self._mark_content_started(state)

    def _apply_reasoning(self, frame: Frame, state: StreamState) -> None:
        state.saw_structured_frame = True
        reasoning = "" if frame.content is None else str(frame.content)
        self.store.set_reasoning(
            state.session_id, reasoning, conversation_id=state.conversation_id
        )
        self._mark_content_started(state)

    def _apply_step(self, frame: Frame, state: StreamState) -> None:
        if isinstance(frame.content, list):
            state.steps = [str(step) for step in frame.content]
        elif frame.content is not None:
            state.steps.append(str(frame.content))
        self.store.update_message(
            state.conversation_id,
            state.message_id,
            steps=list(state.steps),
            session_id=state.session_id,
        )

    def _apply_source(self, frame: Frame, state: StreamState) -> None:
        if isinstance(frame.content, list):
            state.sources = list(frame.content)
        elif frame.content is not None:
            state.sources.append(frame.content)
        self.store.update_message(
            state.conversation_id,
            state.message_id,
            sources=list(state.sources),
            session_id=state.session_id,
        )

    def _apply_backend_error(self, frame: Frame, state: StreamState) -> None:
        error = "" if frame.content is None else str(frame.content)
        state.backend_errors.append(error)
        logger.warning(f"Session {state.session_id}: backend reported error: {error}")
        self.store.publish(
            StoreEvent(
                kind=StoreEventKind.ERROR_REPORTED,
                conversation_id=state.conversation_id,
                session_id=state.session_id,
                payload={"error": error, "fatal": False},
            )
        )

    def _mark_content_started(self, state: StreamState) -> None:
        if state.content_started:
            return
        state.content_started = True
        self.store.update_message(
            state.conversation_id,
            state.message_id,
            loading=False,
            session_id=state.session_id,
        )
