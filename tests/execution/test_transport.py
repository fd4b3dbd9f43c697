"""Tests for the HTTP stream transport."""

import httpx
import pytest

from fitness_pal.config.env_schema import EnvironmentConfig
from fitness_pal.execution.transport import StreamTransport
from fitness_pal.utils.exceptions import TransportError
from tests.helpers.streams import StreamBackend


async def collect(transport, path, payload=None):
    return [chunk async for chunk in transport.stream(path, payload or {"session_id": "s"})]


@pytest.mark.asyncio
async def test_yields_body_chunks_in_order():
    backend = StreamBackend()
    backend.route("/stream", ["one\n", "two\n", "three"])

    chunks = await collect(backend.transport(), "/stream")

    assert "".join(chunks) == "one\ntwo\nthree"


@pytest.mark.asyncio
async def test_posts_json_payload():
    backend = StreamBackend()
    backend.route("/stream", [])

    await collect(backend.transport(), "/stream", {"session_id": "s-1", "prompt": "hi"})

    request = backend.requests[0]
    assert request.method == "POST"
    assert backend.payloads() == [{"session_id": "s-1", "prompt": "hi"}]


@pytest.mark.asyncio
async def test_extra_headers_are_sent():
    backend = StreamBackend()
    backend.route("/stream", [])
    transport = StreamTransport(client=backend.client(), headers={"X-Client": "tests"})

    await collect(transport, "/stream")

    assert backend.requests[0].headers["x-client"] == "tests"


@pytest.mark.asyncio
async def test_non_success_status_raises():
    backend = StreamBackend()
    backend.route("/stream", ["quota exceeded"], status_code=429)

    with pytest.raises(TransportError) as exc_info:
        await collect(backend.transport(), "/stream")

    assert exc_info.value.status_code == 429
    assert exc_info.value.endpoint == "/stream"
    assert exc_info.value.details["body"] == "quota exceeded"


@pytest.mark.asyncio
async def test_body_read_failure_raises():
    backend = StreamBackend()
    backend.route("/stream", ["partial\n", "never"], fail_after=1)
    received = []

    with pytest.raises(TransportError) as exc_info:
        async for chunk in backend.transport().stream("/stream", {}):
            received.append(chunk)

    assert received == ["partial\n"]
    assert exc_info.value.details["error_type"] == "ReadError"


@pytest.mark.asyncio
async def test_connection_failure_raises():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="https://api.test")

    with pytest.raises(TransportError):
        await collect(StreamTransport(client=client), "/stream")


@pytest.mark.asyncio
async def test_owned_client_is_closed():
    transport = StreamTransport(base_url="https://api.test")
    await transport.aclose()
    assert transport.client.is_closed


@pytest.mark.asyncio
async def test_injected_client_is_left_open():
    client = StreamBackend().client()
    await StreamTransport(client=client).aclose()
    assert not client.is_closed
    await client.aclose()


def test_from_environment(monkeypatch):
    monkeypatch.setenv("FITNESS_PAL_API_BASE_URL", "https://backend.test")
    monkeypatch.setenv("FITNESS_PAL_REQUEST_TIMEOUT", "12.5")

    transport = StreamTransport.from_environment(EnvironmentConfig())

    assert transport.client.base_url.host == "backend.test"
    assert transport.client.timeout.read == 12.5
