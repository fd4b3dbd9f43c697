"""State schema definitions for Fitness Pal.

This module defines the data carried through a generation session:
conversation messages, the structured generation result, and the
events the generation store publishes to its observers.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return uuid.uuid4().hex


class Message(BaseModel):
    """A single conversation turn."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    role: Literal["user", "assistant"]
    content: str = ""
    loading: bool = False
    steps: List[str] = Field(default_factory=list)
    sources: List[Any] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
    error: Optional[str] = None


class Conversation(BaseModel):
    """An ordered message history with a display title."""

    id: str
    title: str = "New Conversation"
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def touch(self) -> None:
        self.updated_at = datetime.now()


class Exercise(BaseModel):
    """A generated exercise.

    Backends disagree on exact shapes, so every field is optional, the
    quantities also accept free text ("bodyweight", "20 min") and unknown
    keys are kept.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None  # strength, cardio, flexibility
    muscle_groups: List[str] = Field(default_factory=list)
    difficulty_level: Optional[str] = None
    equipment_needed: List[str] = Field(default_factory=list)
    sets: Optional[Union[int, str]] = None
    reps: Optional[Union[int, str]] = None  # "8-12" is common
    weight: Optional[Union[float, str]] = None
    duration: Optional[Union[int, str]] = None  # seconds when numeric
    notes: Optional[str] = None


class Workout(BaseModel):
    """A generated workout plan."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    day: Optional[str] = None
    exercises: List[Exercise] = Field(default_factory=list)
    notes: Optional[str] = None


class GenerationResult(BaseModel):
    """Structured output accumulated for one generation session."""

    workouts: List[Workout] = Field(default_factory=list)
    exercises: List[Exercise] = Field(default_factory=list)
    reasoning: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.workouts and not self.exercises and self.reasoning is None


class StoreEventKind(str, Enum):
    """Kinds of change the generation store publishes."""

    CONVERSATION_CREATED = "conversation_created"
    CONVERSATION_DELETED = "conversation_deleted"
    MESSAGE_APPENDED = "message_appended"
    MESSAGE_UPDATED = "message_updated"
    RESULT_UPDATED = "result_updated"
    STATUS_UPDATED = "status_updated"
    ERROR_REPORTED = "error_reported"


class StoreEvent(BaseModel):
    """A change notification delivered to store observers."""

    kind: StoreEventKind
    conversation_id: Optional[str] = None
    session_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)
