"""Durable conversation stores.

The engine treats durable storage as an append log of messages keyed by
conversation id. ``ConversationRepository`` is that contract; the
implementations here cover tests (in memory), single-user installs (JSON
files) and the hosted backend (PostgREST tables over HTTP).

Every implementation raises ``PersistenceError`` on failure. Callers in
the engine never let those errors reach the live stream; see
``PersistenceReconciler``.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from fitness_pal.state.schema import Conversation, Message
from fitness_pal.utils.exceptions import PersistenceError, ValidationError
from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)

# Message fields that may be changed after the initial append
UPDATABLE_MESSAGE_FIELDS = {"content", "sources", "steps"}


def message_to_record(conversation_id: str, message: Message) -> Dict[str, Any]:
    """Serialize a message into its stored form."""
    return {
        "id": message.id,
        "conversation_id": conversation_id,
        "role": message.role,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
        "sources": list(message.sources),
        "steps": list(message.steps),
    }


def record_to_message(record: Dict[str, Any]) -> Message:
    """Rebuild a message from its stored form."""
    timestamp = record.get("timestamp")
    return Message(
        id=str(record["id"]),
        role=record["role"],
        content=record.get("content") or "",
        timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
        sources=record.get("sources") or [],
        steps=record.get("steps") or [],
    )


def _check_field(field: str) -> None:
    if field not in UPDATABLE_MESSAGE_FIELDS:
        raise ValidationError(
            f"Message field cannot be updated: {field}",
            field="field",
            value=field,
        )


class ConversationRepository(ABC):
    """Contract of the durable conversation store."""

    @abstractmethod
    async def create_conversation(
        self, conversation_id: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Record a new conversation; returns the stored record."""

    @abstractmethod
    async def conversation_exists(self, conversation_id: str) -> bool:
        """Whether the conversation is already recorded."""

    @abstractmethod
    async def append_message(
        self, conversation_id: str, message: Message
    ) -> Dict[str, Any]:
        """Append a message; returns the stored record including its id."""

    @abstractmethod
    async def update_message_field(
        self, conversation_id: str, message_id: str, field: str, value: Any
    ) -> None:
        """Replace one field of a stored message."""

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and its messages."""

    @abstractmethod
    async def list_conversations(
        self, user_id: Optional[str] = None
    ) -> List[Conversation]:
        """Load conversations with their messages, newest first."""


class InMemoryConversationRepository(ConversationRepository):
    """Dictionary-backed store, mostly for tests and demos."""

    def __init__(self) -> None:
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, List[Dict[str, Any]]] = {}

    async def create_conversation(
        self, conversation_id: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        if conversation_id in self.conversations:
            raise PersistenceError(
                f"Conversation already exists: {conversation_id}",
                operation="create_conversation",
                conversation_id=conversation_id,
            )
        now = datetime.now().isoformat()
        record = {"id": conversation_id, "created_at": now, "updated_at": now, **metadata}
        self.conversations[conversation_id] = record
        self.messages[conversation_id] = []
        return dict(record)

    async def conversation_exists(self, conversation_id: str) -> bool:
        return conversation_id in self.conversations

    async def append_message(
        self, conversation_id: str, message: Message
    ) -> Dict[str, Any]:
        if conversation_id not in self.conversations:
            raise PersistenceError(
                f"Unknown conversation: {conversation_id}",
                operation="append_message",
                conversation_id=conversation_id,
            )
        record = message_to_record(conversation_id, message)
        self.messages[conversation_id].append(record)
        self.conversations[conversation_id]["updated_at"] = datetime.now().isoformat()
        return dict(record)

    async def update_message_field(
        self, conversation_id: str, message_id: str, field: str, value: Any
    ) -> None:
        _check_field(field)
        for record in self.messages.get(conversation_id, []):
            if record["id"] == message_id:
                record[field] = value
                return
        raise PersistenceError(
            f"Unknown message: {message_id}",
            operation="update_message_field",
            conversation_id=conversation_id,
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        self.conversations.pop(conversation_id, None)
        self.messages.pop(conversation_id, None)

    async def list_conversations(
        self, user_id: Optional[str] = None
    ) -> List[Conversation]:
        records = [
            c
            for c in self.conversations.values()
            if user_id is None or c.get("user_id") == user_id
        ]
        records.sort(key=lambda c: c["updated_at"], reverse=True)
        return [
            _build_conversation(record, self.messages.get(record["id"], []))
            for record in records
        ]


class JsonFileConversationRepository(ConversationRepository):
    """One JSON document per conversation under a directory.

    File access runs in a worker thread so the event loop driving the
    read loops is never blocked on disk.
    """

    def __init__(self, base_dir: Path):
        """Initialize the file store.

        Args:
            base_dir: Directory holding ``<conversation_id>.json`` files.
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, conversation_id: str) -> Path:
        """File for a conversation; ids must already be filename safe."""
        if not conversation_id or not all(
            c.isalnum() or c in "-_" for c in conversation_id
        ):
            raise ValidationError(
                "Conversation id may only contain letters, digits, - and _",
                field="conversation_id",
                value=conversation_id,
            )
        return self.base_dir / f"{conversation_id}.json"

    def _read(self, path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, path: Path, document: Dict[str, Any]) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)

    async def _load(self, conversation_id: str, operation: str) -> Dict[str, Any]:
        path = self._path(conversation_id)
        try:
            return await asyncio.to_thread(self._read, path)
        except FileNotFoundError as e:
            raise PersistenceError(
                f"Unknown conversation: {conversation_id}",
                operation=operation,
                conversation_id=conversation_id,
            ) from e
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(
                f"Failed to read conversation file: {e}",
                operation=operation,
                conversation_id=conversation_id,
            ) from e

    async def _save(
        self, conversation_id: str, document: Dict[str, Any], operation: str
    ) -> None:
        try:
            await asyncio.to_thread(self._write, self._path(conversation_id), document)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write conversation file: {e}",
                operation=operation,
                conversation_id=conversation_id,
            ) from e

    async def create_conversation(
        self, conversation_id: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        async with self._lock:
            if self._path(conversation_id).exists():
                raise PersistenceError(
                    f"Conversation already exists: {conversation_id}",
                    operation="create_conversation",
                    conversation_id=conversation_id,
                )
            now = datetime.now().isoformat()
            record = {
                "id": conversation_id,
                "created_at": now,
                "updated_at": now,
                **metadata,
            }
            await self._save(
                conversation_id,
                {"conversation": record, "messages": []},
                "create_conversation",
            )
        logger.debug(f"Created conversation file for {conversation_id}")
        return record

    async def conversation_exists(self, conversation_id: str) -> bool:
        return self._path(conversation_id).exists()

    async def append_message(
        self, conversation_id: str, message: Message
    ) -> Dict[str, Any]:
        async with self._lock:
            document = await self._load(conversation_id, "append_message")
            record = message_to_record(conversation_id, message)
            document["messages"].append(record)
            document["conversation"]["updated_at"] = datetime.now().isoformat()
            await self._save(conversation_id, document, "append_message")
        return record

    async def update_message_field(
        self, conversation_id: str, message_id: str, field: str, value: Any
    ) -> None:
        _check_field(field)
        async with self._lock:
            document = await self._load(conversation_id, "update_message_field")
            for record in document["messages"]:
                if record["id"] == message_id:
                    record[field] = value
                    break
            else:
                raise PersistenceError(
                    f"Unknown message: {message_id}",
                    operation="update_message_field",
                    conversation_id=conversation_id,
                )
            await self._save(conversation_id, document, "update_message_field")

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._path(conversation_id).unlink, True)
            except OSError as e:
                raise PersistenceError(
                    f"Failed to delete conversation file: {e}",
                    operation="delete_conversation",
                    conversation_id=conversation_id,
                ) from e

    async def list_conversations(
        self, user_id: Optional[str] = None
    ) -> List[Conversation]:
        conversations = []
        for path in sorted(self.base_dir.glob("*.json")):
            try:
                document = await asyncio.to_thread(self._read, path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable conversation file {path}: {e}")
                continue
            record = document.get("conversation", {})
            if user_id is not None and record.get("user_id") != user_id:
                continue
            conversations.append(
                _build_conversation(record, document.get("messages", []))
            )
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations


class RestConversationRepository(ConversationRepository):
    """PostgREST-style store with conversation and message tables.

    Messages get their id from the server; the id returned by
    ``append_message`` is the one to use for later field updates.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        conversations_table: str = "knowledge_conversations",
        messages_table: str = "knowledge_messages",
        timeout: float = 10.0,
    ):
        """Initialize the REST store.

        Args:
            base_url: REST root, e.g. ``https://<project>/rest/v1``.
            api_key: Key sent as ``apikey`` and bearer token.
            client: Pre-configured client, mainly for tests.
            conversations_table: Table holding conversation rows.
            messages_table: Table holding message rows.
            timeout: Request timeout in seconds.
        """
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or "", timeout=timeout
        )
        self.headers = headers
        self.conversations_table = conversations_table
        self.messages_table = messages_table

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        conversation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {**self.headers, **kwargs.pop("headers", {})}
        try:
            response = await self.client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise PersistenceError(
                f"Store returned HTTP {e.response.status_code}",
                operation=operation,
                conversation_id=conversation_id,
                details={"body": e.response.text[:300]},
            ) from e
        except httpx.HTTPError as e:
            raise PersistenceError(
                f"Store request failed: {e}",
                operation=operation,
                conversation_id=conversation_id,
            ) from e

    async def create_conversation(
        self, conversation_id: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        now = datetime.now().isoformat()
        row = {"id": conversation_id, "created_at": now, "updated_at": now, **metadata}
        response = await self._request(
            "POST",
            f"/{self.conversations_table}",
            "create_conversation",
            conversation_id,
            json=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) and rows else row

    async def conversation_exists(self, conversation_id: str) -> bool:
        response = await self._request(
            "GET",
            f"/{self.conversations_table}",
            "conversation_exists",
            conversation_id,
            params={"id": f"eq.{conversation_id}", "select": "id"},
        )
        return bool(response.json())

    async def append_message(
        self, conversation_id: str, message: Message
    ) -> Dict[str, Any]:
        row = message_to_record(conversation_id, message)
        row.pop("id")
        response = await self._request(
            "POST",
            f"/{self.messages_table}",
            "append_message",
            conversation_id,
            json=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        stored = rows[0] if isinstance(rows, list) and rows else row

        await self._request(
            "PATCH",
            f"/{self.conversations_table}",
            "append_message",
            conversation_id,
            params={"id": f"eq.{conversation_id}"},
            json={"updated_at": datetime.now().isoformat()},
        )
        return stored

    async def update_message_field(
        self, conversation_id: str, message_id: str, field: str, value: Any
    ) -> None:
        _check_field(field)
        await self._request(
            "PATCH",
            f"/{self.messages_table}",
            "update_message_field",
            conversation_id,
            params={"id": f"eq.{message_id}"},
            json={field: value},
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        # Messages are removed by the table's cascade
        await self._request(
            "DELETE",
            f"/{self.conversations_table}",
            "delete_conversation",
            conversation_id,
            params={"id": f"eq.{conversation_id}"},
        )

    async def list_conversations(
        self, user_id: Optional[str] = None
    ) -> List[Conversation]:
        params = {
            "select": "id,title,created_at,updated_at",
            "order": "updated_at.desc",
        }
        if user_id is not None:
            params["user_id"] = f"eq.{user_id}"
        response = await self._request(
            "GET", f"/{self.conversations_table}", "list_conversations", params=params
        )

        conversations = []
        for record in response.json():
            messages_response = await self._request(
                "GET",
                f"/{self.messages_table}",
                "list_conversations",
                record["id"],
                params={
                    "conversation_id": f"eq.{record['id']}",
                    "order": "timestamp.asc",
                },
            )
            conversations.append(_build_conversation(record, messages_response.json()))
        return conversations

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _build_conversation(
    record: Dict[str, Any], message_records: List[Dict[str, Any]]
) -> Conversation:
    conversation = Conversation(
        id=str(record["id"]),
        title=record.get("title") or "New Conversation",
        messages=[record_to_message(m) for m in message_records],
    )
    if record.get("created_at"):
        conversation.created_at = datetime.fromisoformat(record["created_at"])
    if record.get("updated_at"):
        conversation.updated_at = datetime.fromisoformat(record["updated_at"])
    return conversation
