"""Tests for the durable conversation stores."""

import json

import httpx
import pytest

from fitness_pal.persistence.repository import (
    InMemoryConversationRepository,
    JsonFileConversationRepository,
    RestConversationRepository,
    message_to_record,
    record_to_message,
)
from fitness_pal.state.schema import Message
from fitness_pal.utils.exceptions import PersistenceError, ValidationError


@pytest.fixture(params=["memory", "file"])
def local_repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryConversationRepository()
    return JsonFileConversationRepository(tmp_path / "conversations")


def test_record_round_trip_keeps_fields():
    message = Message(role="assistant", content="Rest", steps=["s1"], sources=[{"t": 1}])
    restored = record_to_message(message_to_record("conv-1", message))

    assert restored.id == message.id
    assert restored.timestamp == message.timestamp
    assert (restored.content, restored.steps, restored.sources) == ("Rest", ["s1"], [{"t": 1}])


class TestLocalRepositories:
    @pytest.mark.asyncio
    async def test_create_and_exists(self, local_repository):
        assert not await local_repository.conversation_exists("conv-1")

        record = await local_repository.create_conversation("conv-1", {"title": "Legs"})

        assert record["title"] == "Legs"
        assert await local_repository.conversation_exists("conv-1")

    @pytest.mark.asyncio
    async def test_duplicate_create_fails(self, local_repository):
        await local_repository.create_conversation("conv-1", {})
        with pytest.raises(PersistenceError):
            await local_repository.create_conversation("conv-1", {})

    @pytest.mark.asyncio
    async def test_append_requires_conversation(self, local_repository):
        with pytest.raises(PersistenceError) as exc_info:
            await local_repository.append_message("missing", Message(role="user"))
        assert exc_info.value.operation == "append_message"

    @pytest.mark.asyncio
    async def test_append_update_and_list(self, local_repository):
        await local_repository.create_conversation("conv-1", {"title": "Core", "user_id": "u1"})
        user = Message(role="user", content="Abs?")
        answer = Message(role="assistant", content="Planks")
        await local_repository.append_message("conv-1", user)
        record = await local_repository.append_message("conv-1", answer)
        await local_repository.update_message_field("conv-1", record["id"], "sources", [{"t": "ACE"}])

        conversations = await local_repository.list_conversations("u1")

        assert len(conversations) == 1
        assert conversations[0].title == "Core"
        assert [m.content for m in conversations[0].messages] == ["Abs?", "Planks"]
        assert conversations[0].messages[1].sources == [{"t": "ACE"}]

    @pytest.mark.asyncio
    async def test_list_filters_by_user(self, local_repository):
        await local_repository.create_conversation("mine", {"user_id": "u1"})
        await local_repository.create_conversation("theirs", {"user_id": "u2"})

        assert [c.id for c in await local_repository.list_conversations("u1")] == ["mine"]
        assert len(await local_repository.list_conversations()) == 2

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_field(self, local_repository):
        await local_repository.create_conversation("conv-1", {})
        with pytest.raises(ValidationError):
            await local_repository.update_message_field("conv-1", "m", "role", "user")

    @pytest.mark.asyncio
    async def test_update_unknown_message(self, local_repository):
        await local_repository.create_conversation("conv-1", {})
        with pytest.raises(PersistenceError):
            await local_repository.update_message_field("conv-1", "missing", "content", "x")

    @pytest.mark.asyncio
    async def test_delete(self, local_repository):
        await local_repository.create_conversation("conv-1", {})
        await local_repository.delete_conversation("conv-1")
        await local_repository.delete_conversation("conv-1")

        assert not await local_repository.conversation_exists("conv-1")


class TestJsonFileRepository:
    @pytest.mark.asyncio
    async def test_one_file_per_conversation(self, tmp_path):
        repository = JsonFileConversationRepository(tmp_path)
        await repository.create_conversation("conv-1", {"title": "Legs"})
        await repository.append_message("conv-1", Message(role="user", content="Squats"))

        document = json.loads((tmp_path / "conv-1.json").read_text(encoding="utf-8"))
        assert document["conversation"]["title"] == "Legs"
        assert document["messages"][0]["content"] == "Squats"

    @pytest.mark.asyncio
    async def test_unreadable_files_are_skipped(self, tmp_path):
        repository = JsonFileConversationRepository(tmp_path)
        await repository.create_conversation("good", {})
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        assert [c.id for c in await repository.list_conversations()] == ["good"]

    @pytest.mark.asyncio
    async def test_corrupt_conversation_raises_on_write(self, tmp_path):
        repository = JsonFileConversationRepository(tmp_path)
        (tmp_path / "conv-1.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError):
            await repository.append_message("conv-1", Message(role="user"))

    def test_unusable_id(self, tmp_path):
        with pytest.raises(ValidationError):
            JsonFileConversationRepository(tmp_path)._path("../..")

    @pytest.mark.asyncio
    async def test_ids_that_differ_only_in_punctuation_never_share_a_file(self, tmp_path):
        repository = JsonFileConversationRepository(tmp_path)
        await repository.create_conversation("ab", {"title": "Plain"})

        with pytest.raises(ValidationError):
            await repository.create_conversation("a.b", {"title": "Dotted"})

        assert [c.title for c in await repository.list_conversations()] == ["Plain"]


class FakePostgrest:
    """Minimal PostgREST double for the two conversation tables."""

    def __init__(self, fail_status=None):
        self.requests = []
        self.rows = {"knowledge_conversations": [], "knowledge_messages": []}
        self.fail_status = fail_status
        self._next_id = 100

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status:
            return httpx.Response(self.fail_status, json={"message": "denied"})

        table = request.url.path.rsplit("/", 1)[-1]
        params = request.url.params
        rows = self.rows[table]

        def matches(row):
            for key, value in params.items():
                if key in ("select", "order"):
                    continue
                if str(row.get(key)) != value.removeprefix("eq."):
                    return False
            return True

        if request.method == "POST":
            row = json.loads(request.content)
            if table == "knowledge_messages":
                row["id"] = self._next_id
                self._next_id += 1
            rows.append(row)
            return httpx.Response(201, json=[row])
        if request.method == "GET":
            return httpx.Response(200, json=[r for r in rows if matches(r)])
        if request.method == "PATCH":
            for row in rows:
                if matches(row):
                    row.update(json.loads(request.content))
            return httpx.Response(204)
        if request.method == "DELETE":
            self.rows[table] = [r for r in rows if not matches(r)]
            return httpx.Response(204)
        return httpx.Response(405)

    def repository(self) -> RestConversationRepository:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url="https://store.test/rest/v1",
        )
        return RestConversationRepository(api_key="anon-key", client=client)


class TestRestRepository:
    @pytest.mark.asyncio
    async def test_headers_and_tables(self):
        fake = FakePostgrest()
        repository = fake.repository()

        await repository.create_conversation("conv-1", {"title": "Cardio", "user_id": "u1"})

        request = fake.requests[0]
        assert request.url.path == "/rest/v1/knowledge_conversations"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"
        assert request.headers["prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_server_assigns_message_ids(self):
        fake = FakePostgrest()
        repository = fake.repository()
        await repository.create_conversation("conv-1", {})

        record = await repository.append_message("conv-1", Message(role="user", content="Run?"))

        assert record["id"] == 100
        assert record["conversation_id"] == "conv-1"
        assert fake.requests[-1].method == "PATCH"

    @pytest.mark.asyncio
    async def test_full_cycle(self):
        fake = FakePostgrest()
        repository = fake.repository()
        await repository.create_conversation("conv-1", {"title": "Cardio", "user_id": "u1"})
        assert await repository.conversation_exists("conv-1")
        assert not await repository.conversation_exists("conv-2")

        record = await repository.append_message("conv-1", Message(role="assistant", content="Intervals"))
        await repository.update_message_field("conv-1", str(record["id"]), "content", "Tempo runs")

        conversations = await repository.list_conversations("u1")
        assert conversations[0].title == "Cardio"
        assert conversations[0].messages[0].content == "Tempo runs"
        assert conversations[0].messages[0].id == "100"

        await repository.delete_conversation("conv-1")
        assert not await repository.conversation_exists("conv-1")

    @pytest.mark.asyncio
    async def test_http_failure_becomes_persistence_error(self):
        repository = FakePostgrest(fail_status=401).repository()

        with pytest.raises(PersistenceError) as exc_info:
            await repository.create_conversation("conv-1", {})

        assert exc_info.value.operation == "create_conversation"
        assert "401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_network_failure_becomes_persistence_error(self):
        def unreachable(request):
            raise httpx.ConnectError("no route", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(unreachable), base_url="https://store.test")
        repository = RestConversationRepository(client=client)

        with pytest.raises(PersistenceError):
            await repository.conversation_exists("conv-1")
