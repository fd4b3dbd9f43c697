"""State management for Fitness Pal.

Conversation messages and structured generation results live in the
``GenerationStore``; their shapes are defined in ``schema``.
"""

from .generation_store import GenerationStore, StoreObserver
from .schema import (
    Conversation,
    Exercise,
    GenerationResult,
    Message,
    StoreEvent,
    StoreEventKind,
    Workout,
)

__all__ = [
    "Conversation",
    "Exercise",
    "GenerationResult",
    "GenerationStore",
    "Message",
    "StoreEvent",
    "StoreEventKind",
    "StoreObserver",
    "Workout",
]
