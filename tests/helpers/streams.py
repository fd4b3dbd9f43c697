"""Helpers for scripting generation-stream backends in tests.

``StreamBackend`` stands in for the HTTP backend through
``httpx.MockTransport``: each path gets a queue of scripted responses,
and every request is recorded for later assertions.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from fitness_pal.execution.transport import StreamTransport

BASE_URL = "https://api.test"


def record(frame: Any, prefix: str = "data: ") -> str:
    """One newline-terminated wire record."""
    return f"{prefix}{json.dumps(frame)}\n"


def body(*frames: Any, prefix: str = "data: ") -> str:
    return "".join(record(frame, prefix) for frame in frames)


def split_every(text: str, size: int) -> List[str]:
    """Split text into chunks of ``size`` characters."""
    return [text[i:i + size] for i in range(0, len(text), size)]


def token(content: str) -> Dict[str, Any]:
    return {"type": "token", "content": content}


@dataclass
class ScriptedResponse:
    """One scripted response body."""

    chunks: List[str]
    status_code: int = 200
    fail_after: Optional[int] = None
    gate: Optional[asyncio.Event] = None
    gate_after: int = 1
    reached_gate: asyncio.Event = field(default_factory=asyncio.Event)

    async def iter_bytes(self):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            if self.gate is not None and index == self.gate_after:
                self.reached_gate.set()
                await self.gate.wait()
            yield chunk.encode("utf-8")
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise httpx.ReadError("connection reset by peer")


class StreamBackend:
    """Scripted generation backend served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: Dict[str, List[ScriptedResponse]] = {}
        self.requests: List[httpx.Request] = []

    def route(
        self,
        path: str,
        chunks: List[str],
        status_code: int = 200,
        fail_after: Optional[int] = None,
        gate: Optional[asyncio.Event] = None,
        gate_after: int = 1,
    ) -> ScriptedResponse:
        """Queue a response for the next request to ``path``."""
        response = ScriptedResponse(
            chunks=chunks,
            status_code=status_code,
            fail_after=fail_after,
            gate=gate,
            gate_after=gate_after,
        )
        self.routes.setdefault(path, []).append(response)
        return response

    def payloads(self, path: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            json.loads(request.content)
            for request in self.requests
            if path is None or request.url.path == path
        ]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, text="no scripted response")
        scripted = queue.pop(0)
        if scripted.status_code >= 400:
            return httpx.Response(scripted.status_code, text="".join(scripted.chunks))
        return httpx.Response(scripted.status_code, content=scripted.iter_bytes())

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url=BASE_URL
        )

    def transport(self) -> StreamTransport:
        return StreamTransport(client=self.client())
