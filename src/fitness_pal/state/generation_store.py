"""In-memory generation store for Fitness Pal.

The store accumulates conversation messages and per-session generation
results. It is plain, explicitly constructed state: whoever starts a
session owns a store and passes it in. All mutation goes through the
methods below, each of which publishes a ``StoreEvent`` afterwards so
observers never need to read-modify-write their own copy.

The store performs no I/O.
"""

from typing import Any, Callable, Dict, List, Optional

from fitness_pal.state.schema import (
    Conversation,
    Exercise,
    GenerationResult,
    Message,
    StoreEvent,
    StoreEventKind,
    Workout,
)
from fitness_pal.utils.exceptions import ValidationError
from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)

StoreObserver = Callable[[StoreEvent], None]

_UNSET: Any = object()


class GenerationStore:
    """Conversation messages and generation results keyed by id."""

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._results: Dict[str, GenerationResult] = {}
        self._observers: List[StoreObserver] = []

    # Observation

    def subscribe(self, observer: StoreObserver) -> Callable[[], None]:
        """Register an observer for store events.

        Args:
            observer: Callable receiving each published ``StoreEvent``.

        Returns:
            Callable that removes the observer again.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish(self, event: StoreEvent) -> None:
        """Deliver an event to every observer.

        A failing observer is logged and skipped; it never interrupts the
        mutation that produced the event.
        """
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.error(
                    f"Store observer failed on {event.kind.value}: {e}",
                    exc_info=True,
                )

    # Conversations

    def create_conversation(
        self, conversation_id: str, title: Optional[str] = None
    ) -> Conversation:
        """Create an empty conversation, or return the existing one."""
        existing = self._conversations.get(conversation_id)
        if existing is not None:
            return existing

        conversation = Conversation(id=conversation_id)
        if title:
            conversation.title = title
        self._conversations[conversation_id] = conversation
        logger.debug(f"Created conversation {conversation_id}")
        self.publish(
            StoreEvent(
                kind=StoreEventKind.CONVERSATION_CREATED,
                conversation_id=conversation_id,
                payload={"title": conversation.title},
            )
        )
        return conversation

    def add_conversation(self, conversation: Conversation) -> None:
        """Insert a fully built conversation, e.g. one loaded from storage."""
        self._conversations[conversation.id] = conversation
        self.publish(
            StoreEvent(
                kind=StoreEventKind.CONVERSATION_CREATED,
                conversation_id=conversation.id,
                payload={"title": conversation.title},
            )
        )

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Return a deep copy of a conversation.

        Raises:
            ValidationError: If the conversation does not exist.
        """
        return self._require(conversation_id).model_copy(deep=True)

    def list_conversations(self) -> List[Conversation]:
        """Return copies of all conversations, most recently updated first."""
        conversations = sorted(
            self._conversations.values(), key=lambda c: c.updated_at, reverse=True
        )
        return [c.model_copy(deep=True) for c in conversations]

    def set_title(self, conversation_id: str, title: str) -> None:
        conversation = self._require(conversation_id)
        conversation.title = title
        conversation.touch()

    def delete_conversation(self, conversation_id: str) -> bool:
        """Remove a conversation. Returns False if it was unknown."""
        if self._conversations.pop(conversation_id, None) is None:
            return False
        self.publish(
            StoreEvent(
                kind=StoreEventKind.CONVERSATION_DELETED,
                conversation_id=conversation_id,
            )
        )
        return True

    # Messages

    def append_message(self, conversation_id: str, message: Message) -> None:
        """Append a message to a conversation's history."""
        conversation = self._require(conversation_id)
        conversation.messages.append(message)
        conversation.touch()
        self.publish(
            StoreEvent(
                kind=StoreEventKind.MESSAGE_APPENDED,
                conversation_id=conversation_id,
                payload={"message_id": message.id, "role": message.role},
            )
        )

    def get_messages(self, conversation_id: str) -> List[Message]:
        """Return copies of a conversation's messages in order."""
        return [m.model_copy(deep=True) for m in self._require(conversation_id).messages]

    def get_message(self, conversation_id: str, message_id: str) -> Message:
        """Return a copy of a single message."""
        return self._find_message(conversation_id, message_id).model_copy(deep=True)

    def update_message(
        self,
        conversation_id: str,
        message_id: str,
        *,
        content: Optional[str] = None,
        steps: Optional[List[str]] = None,
        sources: Optional[List[Any]] = None,
        loading: Optional[bool] = None,
        error: Any = _UNSET,
        session_id: Optional[str] = None,
    ) -> None:
        """Replace fields on a message in place.

        Every field is a full replacement. ``steps`` and ``sources`` are
        snapshots: callers pass the complete list observed so far, so an
        update carrying a list shorter than the stored one never drops
        entries already recorded.
        """
        message = self._find_message(conversation_id, message_id)
        self._apply_update(message, content, steps, sources, loading, error)
        self._require(conversation_id).touch()
        self.publish(
            StoreEvent(
                kind=StoreEventKind.MESSAGE_UPDATED,
                conversation_id=conversation_id,
                session_id=session_id,
                payload={
                    "message_id": message.id,
                    "content": message.content,
                    "loading": message.loading,
                    "steps": list(message.steps),
                    "sources": list(message.sources),
                    "error": message.error,
                },
            )
        )

    def update_last_message(
        self,
        conversation_id: str,
        *,
        content: Optional[str] = None,
        steps: Optional[List[str]] = None,
        sources: Optional[List[Any]] = None,
        loading: Optional[bool] = None,
    ) -> None:
        """Replace fields on the most recent message of a conversation."""
        conversation = self._require(conversation_id)
        if not conversation.messages:
            raise ValidationError(
                "Conversation has no messages to update",
                field="conversation_id",
                value=conversation_id,
            )
        self.update_message(
            conversation_id,
            conversation.messages[-1].id,
            content=content,
            steps=steps,
            sources=sources,
            loading=loading,
        )

    # Generation results

    def result_for(self, session_id: str) -> GenerationResult:
        """Return a copy of the result accumulated for a session."""
        return self._result(session_id).model_copy(deep=True)

    def replace_workouts(
        self, session_id: str, workouts: List[Workout], conversation_id: Optional[str] = None
    ) -> None:
        self._result(session_id).workouts = list(workouts)
        self._publish_result(session_id, conversation_id, "workouts")

    def replace_exercises(
        self, session_id: str, exercises: List[Exercise], conversation_id: Optional[str] = None
    ) -> None:
        self._result(session_id).exercises = list(exercises)
        self._publish_result(session_id, conversation_id, "exercises")

    def set_reasoning(
        self, session_id: str, reasoning: str, conversation_id: Optional[str] = None
    ) -> None:
        self._result(session_id).reasoning = reasoning
        self._publish_result(session_id, conversation_id, "reasoning")

    def discard_result(self, session_id: str) -> None:
        self._results.pop(session_id, None)

    # Snapshots

    def snapshot(self, conversation_id: str) -> Dict[str, Any]:
        """Read the current state of a conversation for observation."""
        conversation = self._require(conversation_id)
        return conversation.model_dump(mode="json")

    def _publish_result(
        self, session_id: str, conversation_id: Optional[str], field: str
    ) -> None:
        self.publish(
            StoreEvent(
                kind=StoreEventKind.RESULT_UPDATED,
                conversation_id=conversation_id,
                session_id=session_id,
                payload={
                    "field": field,
                    "result": self._results[session_id].model_dump(mode="json"),
                },
            )
        )

    def _result(self, session_id: str) -> GenerationResult:
        if session_id not in self._results:
            self._results[session_id] = GenerationResult()
        return self._results[session_id]

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ValidationError(
                f"Unknown conversation: {conversation_id}",
                field="conversation_id",
                value=conversation_id,
            )
        return conversation

    def _find_message(self, conversation_id: str, message_id: str) -> Message:
        for message in self._require(conversation_id).messages:
            if message.id == message_id:
                return message
        raise ValidationError(
            f"Unknown message {message_id} in conversation {conversation_id}",
            field="message_id",
            value=message_id,
        )

    @staticmethod
    def _apply_update(
        message: Message,
        content: Optional[str],
        steps: Optional[List[str]],
        sources: Optional[List[Any]],
        loading: Optional[bool],
        error: Any,
    ) -> None:
        if content is not None:
            message.content = content
        if steps is not None:
            message.steps = _merge_snapshot(message.steps, steps)
        if sources is not None:
            message.sources = _merge_snapshot(message.sources, sources)
        if loading is not None:
            message.loading = loading
        if error is not _UNSET:
            message.error = error


def _merge_snapshot(current: List[Any], snapshot: List[Any]) -> List[Any]:
    """Apply a full-list snapshot without losing already recorded entries.

    A snapshot that extends the current list (the normal case) replaces
    it. A snapshot that is not an extension keeps the recorded entries and
    appends the ones not seen yet.
    """
    if snapshot[: len(current)] == current:
        return list(snapshot)
    merged = list(current)
    for item in snapshot:
        if item not in merged:
            merged.append(item)
    return merged
