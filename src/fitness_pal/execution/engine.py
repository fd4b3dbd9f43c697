"""Conversation-level entry point for generation streams.

The GenerationEngine is what UI event handlers call. It creates the user
turn and the loading assistant placeholder, keeps at most one live
session per conversation, and wires each SessionController to the
store, the transport and the persistence reconciler.
"""

import uuid
from typing import Any, Dict, List, Optional

from fitness_pal.config.env_schema import EnvironmentConfig
from fitness_pal.config.loader import ConfigLoader
from fitness_pal.config.models import GenerationKind, StreamConfig
from fitness_pal.execution.session_controller import SessionController
from fitness_pal.execution.transport import StreamTransport
from fitness_pal.persistence.reconciler import PersistenceReconciler
from fitness_pal.persistence.repository import (
    ConversationRepository,
    JsonFileConversationRepository,
    RestConversationRepository,
)
from fitness_pal.state.generation_store import GenerationStore
from fitness_pal.state.schema import Conversation, Message
from fitness_pal.utils.exceptions import SessionStateError, ValidationError
from fitness_pal.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def derive_title(prompt: str, max_length: int = 25) -> str:
    """Conversation title taken from the first user message."""
    prompt = prompt.strip()
    if len(prompt) > max_length:
        return prompt[:max_length] + "..."
    return prompt


class GenerationEngine:
    """Runs generation sessions against conversations in a store."""

    def __init__(
        self,
        store: GenerationStore,
        transport: StreamTransport,
        reconciler: Optional[PersistenceReconciler] = None,
        config: Optional[StreamConfig] = None,
        user_id: Optional[str] = None,
    ):
        """Initialize the engine.

        Args:
            store: Store holding conversations and results.
            transport: HTTP stream transport shared by all sessions.
            reconciler: Durable mirroring; None keeps everything in memory.
            config: Stream configuration.
            user_id: Owner of new conversations, forwarded to the backend.
        """
        self.store = store
        self.transport = transport
        self.reconciler = reconciler
        self.config = config or StreamConfig()
        self.user_id = user_id

        self.sessions: Dict[str, SessionController] = {}
        self._active: Dict[str, SessionController] = {}

    @classmethod
    def from_environment(
        cls,
        env: Optional[EnvironmentConfig] = None,
        store: Optional[GenerationStore] = None,
        user_id: Optional[str] = None,
        configure_logging: bool = False,
    ) -> "GenerationEngine":
        """Build an engine from environment settings.

        The durable store is chosen from the environment: a REST store when
        ``FITNESS_PAL_STORE_URL`` is set, a JSON file store when
        ``FITNESS_PAL_STORE_PATH`` is set, otherwise none.

        With ``configure_logging`` the root logger is set up from
        ``FITNESS_PAL_LOG_LEVEL`` and ``FITNESS_PAL_LOG_DIR``. Applications
        pass it once at startup; libraries embedding the engine leave
        logging alone.

        Raises:
            ConfigurationError: If the settings or the YAML file are invalid.
        """
        env = env or EnvironmentConfig()
        if configure_logging:
            log_file = setup_logging(env.log_level, env.log_path)
            logger.info(f"Logging to {log_file}")
        env.validate_store_settings()
        config = ConfigLoader(env.config_file).load()

        repository: Optional[ConversationRepository] = None
        if env.store_url:
            repository = RestConversationRepository(
                base_url=env.store_url,
                api_key=env.store_api_key,
                timeout=env.request_timeout,
            )
        elif env.store_path:
            repository = JsonFileConversationRepository(env.store_path)

        reconciler = PersistenceReconciler(repository) if repository else None
        logger.info(
            f"Generation engine configured for {env.api_base_url} "
            f"(durable store: {type(repository).__name__ if repository else 'none'})"
        )
        return cls(
            store=store or GenerationStore(),
            transport=StreamTransport.from_environment(env),
            reconciler=reconciler,
            config=config,
            user_id=user_id,
        )

    # Conversations

    def new_conversation(
        self, conversation_id: Optional[str] = None, title: Optional[str] = None
    ) -> Conversation:
        conversation_id = conversation_id or f"conv-{uuid.uuid4().hex}"
        return self.store.create_conversation(conversation_id, title=title)

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Discard any live session, then delete locally and durably."""
        self.discard_session(conversation_id, reason="conversation deleted")
        deleted = self.store.delete_conversation(conversation_id)
        if self.reconciler is not None:
            await self.reconciler.delete_conversation(conversation_id)
        return deleted

    async def load_conversations(self, user_id: Optional[str] = None) -> int:
        """Restore a user's persisted conversations into the store."""
        if self.reconciler is None:
            return 0
        return await self.reconciler.load_conversations(
            self.store, user_id if user_id is not None else self.user_id
        )

    # Sessions

    async def send_prompt(
        self,
        conversation_id: str,
        prompt: str,
        kind: GenerationKind = GenerationKind.WORKOUT,
        context: Optional[Dict[str, Any]] = None,
        flags: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> SessionController:
        """Start a new generation session for a user prompt.

        Any session still live on the conversation is cancelled first; its
        later output is never applied.

        Args:
            conversation_id: Conversation to write into; created if missing.
            prompt: User prompt text.
            kind: Generation flow to use.
            context: Optional structured context for the backend.
            flags: Optional backend flags.
            session_id: Explicit session id; a fresh one by default.

        Returns:
            The session's controller once its first read loop has returned
            (paused, completed, errored or cancelled).

        Raises:
            ValidationError: If the prompt is blank.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty", field="prompt", value=prompt)

        kind = GenerationKind(kind)
        self.store.create_conversation(conversation_id)
        self.discard_session(conversation_id, reason="superseded by new prompt")

        if not self.store.get_messages(conversation_id):
            self.store.set_title(
                conversation_id, derive_title(prompt, self.config.title_max_length)
            )

        user_message = Message(role="user", content=prompt)
        assistant_message = Message(role="assistant", loading=True)
        self.store.append_message(conversation_id, user_message)
        self.store.append_message(conversation_id, assistant_message)

        controller = SessionController(
            session_id=session_id or uuid.uuid4().hex,
            conversation_id=conversation_id,
            message_id=assistant_message.id,
            store=self.store,
            transport=self.transport,
            endpoint=self.config.endpoint_for(kind),
            kind=kind,
            config=self.config,
            reconciler=self.reconciler,
            user_id=self.user_id,
        )
        self.sessions[controller.session_id] = controller
        self._active[conversation_id] = controller

        if self.reconciler is not None:
            metadata: Dict[str, Any] = {
                "title": self.store.get_conversation(conversation_id).title
            }
            if self.user_id is not None:
                metadata["user_id"] = self.user_id
            await self.reconciler.ensure_conversation(conversation_id, metadata)
            self.reconciler.persist_message(conversation_id, user_message)

        if controller.is_cancelled:
            # Superseded while the conversation was being registered
            return controller

        await controller.start(prompt, context=context, flags=flags)
        return controller

    async def submit_feedback(self, session_id: str, feedback: str) -> SessionController:
        """Resume a paused session with user feedback.

        Raises:
            SessionStateError: If the session is unknown or not paused.
        """
        controller = self.sessions.get(session_id)
        if controller is None:
            raise SessionStateError("Unknown session", session_id=session_id)
        await controller.resume(feedback)
        return controller

    def active_session(self, conversation_id: str) -> Optional[SessionController]:
        """The session currently allowed to write into a conversation."""
        controller = self._active.get(conversation_id)
        if controller is not None and controller.is_cancelled:
            return None
        return controller

    def get_session(self, session_id: str) -> Optional[SessionController]:
        return self.sessions.get(session_id)

    def list_sessions(self, conversation_id: Optional[str] = None) -> List[SessionController]:
        return [
            s
            for s in self.sessions.values()
            if conversation_id is None or s.conversation_id == conversation_id
        ]

    def discard_session(self, conversation_id: str, reason: str = "discarded") -> bool:
        """Cancel and forget the conversation's current session.

        Returns:
            True if a session was discarded.
        """
        controller = self._active.pop(conversation_id, None)
        if controller is None:
            return False

        controller.cancel(reason)
        self.sessions.pop(controller.session_id, None)
        self.store.discard_result(controller.session_id)
        logger.debug(
            f"Discarded session {controller.session_id} of conversation {conversation_id}"
        )
        return True

    async def aclose(self) -> None:
        """Cancel live sessions, wait for durable writes, close the transport."""
        for conversation_id in list(self._active):
            controller = self._active[conversation_id]
            if controller.is_live:
                self.discard_session(conversation_id, reason="engine closed")
        if self.reconciler is not None:
            await self.reconciler.drain()
        await self.transport.aclose()
        logger.info("Generation engine closed")
