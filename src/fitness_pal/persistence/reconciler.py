"""Best-effort mirroring of finalized messages to a durable store.

The reconciler sits beside the live stream, not in it. Writes are
scheduled as asyncio tasks and never awaited by the read loop; a failed
write becomes a warning and leaves local state untouched. Conversation
registration is the one call callers await, since a message write for a
conversation the store has never seen would fail anyway.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from fitness_pal.persistence.repository import ConversationRepository
from fitness_pal.state.generation_store import GenerationStore
from fitness_pal.state.schema import Message
from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)

WarningCallback = Callable[[str], None]


class PersistenceReconciler:
    """Schedules durable writes and collects their failures as warnings."""

    def __init__(
        self,
        repository: ConversationRepository,
        on_warning: Optional[WarningCallback] = None,
    ):
        """Initialize the reconciler.

        Args:
            repository: Durable conversation store.
            on_warning: Called with the text of every persistence warning.
        """
        self.repository = repository
        self.on_warning = on_warning
        self.warnings: List[str] = []

        self._registered: Set[str] = set()
        self._remote_ids: Dict[str, str] = {}
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def remote_id(self, message_id: str) -> Optional[str]:
        """Durable id recorded for a local message, if it was written."""
        return self._remote_ids.get(message_id)

    def is_registered(self, conversation_id: str) -> bool:
        return conversation_id in self._registered

    async def ensure_conversation(
        self, conversation_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Record a conversation durably unless it already exists.

        Runs at most once per conversation while it succeeds. A failure is
        reported as a warning and retried on the next call.

        Returns:
            True if the conversation is known to exist durably.
        """
        if conversation_id in self._registered:
            return True

        try:
            if not await self.repository.conversation_exists(conversation_id):
                await self.repository.create_conversation(
                    conversation_id, dict(metadata or {})
                )
                logger.info(f"Registered conversation {conversation_id} in durable store")
        except Exception as e:
            self._warn(f"Failed to register conversation {conversation_id}: {e}", e)
            return False

        self._registered.add(conversation_id)
        return True

    def persist_message(
        self, conversation_id: str, message: Message
    ) -> asyncio.Task:
        """Schedule an append of a message that no longer changes locally.

        The message is copied first, so later local edits never leak into
        the write.

        Returns:
            The scheduled task; awaiting it is optional.
        """
        snapshot = message.model_copy(deep=True)
        return self._schedule(
            self._append(conversation_id, snapshot),
            f"persist {snapshot.role} message {snapshot.id}",
        )

    def update_message_field(
        self, conversation_id: str, message_id: str, field: str, value: Any
    ) -> asyncio.Task:
        """Schedule a single-field update of an already persisted message."""
        return self._schedule(
            self._update(conversation_id, message_id, field, value),
            f"update {field} of message {message_id}",
        )

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation durably.

        Returns:
            False if the store rejected the delete (a warning is recorded).
        """
        try:
            await self.repository.delete_conversation(conversation_id)
        except Exception as e:
            self._warn(f"Failed to delete conversation {conversation_id}: {e}", e)
            return False
        self._registered.discard(conversation_id)
        return True

    async def load_conversations(
        self, store: GenerationStore, user_id: Optional[str] = None
    ) -> int:
        """Restore persisted conversations into a store.

        Conversations already present in the store are left alone.

        Returns:
            Number of conversations added.
        """
        try:
            conversations = await self.repository.list_conversations(user_id)
        except Exception as e:
            self._warn(f"Failed to load conversations: {e}", e)
            return 0

        added = 0
        for conversation in conversations:
            self._registered.add(conversation.id)
            for message in conversation.messages:
                self._remote_ids[message.id] = message.id
            if store.has_conversation(conversation.id):
                continue
            store.add_conversation(conversation)
            added += 1

        logger.info(f"Loaded {added} conversation(s) from durable store")
        return added

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Internals

    def _schedule(self, coro: Awaitable[None], description: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        task.set_name(description)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug(f"Scheduled durable write: {description}")
        return task

    async def _append(self, conversation_id: str, message: Message) -> None:
        try:
            record = await self.repository.append_message(conversation_id, message)
        except Exception as e:
            self._warn(
                f"Failed to persist {message.role} message in conversation "
                f"{conversation_id}: {e}",
                e,
            )
            return

        remote_id = record.get("id") if isinstance(record, dict) else None
        if remote_id is not None:
            self._remote_ids[message.id] = str(remote_id)

    async def _update(
        self, conversation_id: str, message_id: str, field: str, value: Any
    ) -> None:
        target = self._remote_ids.get(message_id, message_id)
        try:
            await self.repository.update_message_field(
                conversation_id, target, field, value
            )
        except Exception as e:
            self._warn(f"Failed to update {field} of message {message_id}: {e}", e)

    def _warn(self, warning: str, exception: Exception) -> None:
        logger.warning(warning, exc_info=exception)
        self.warnings.append(warning)
        if self.on_warning is not None:
            try:
                self.on_warning(warning)
            except Exception as e:
                logger.error(f"Persistence warning callback failed: {e}")
