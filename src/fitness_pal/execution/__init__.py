"""Execution layer for Fitness Pal generation streams.

Decoding, dispatch, session control and the conversation-level engine.
"""

from .engine import GenerationEngine, derive_title
from .event_dispatcher import DispatchOutcome, EventDispatcher, FrameKind, StreamState
from .frame_decoder import FrameDecoder
from .result_parser import reconstruct_result_from_buffer
from .session_controller import SessionController, SessionStatus
from .transport import StreamTransport

__all__ = [
    "DispatchOutcome",
    "EventDispatcher",
    "FrameDecoder",
    "FrameKind",
    "GenerationEngine",
    "SessionController",
    "SessionStatus",
    "StreamState",
    "StreamTransport",
    "derive_title",
    "reconstruct_result_from_buffer",
]
