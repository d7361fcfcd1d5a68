"""Shared fixtures for relay and conversation tests."""

import asyncio
from typing import List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

HELLO_STREAM = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n'
    b"data: [DONE]\n"
)


class FakeTransport:
    """In-memory stand-in for the relay; records every open_stream call."""

    def __init__(self, chunks=(), error: Optional[Exception] = None,
                 fail_after: Optional[Exception] = None, gate: Optional[asyncio.Event] = None,
                 stall: bool = False):
        self.chunks = list(chunks)
        self.error = error
        self.fail_after = fail_after
        self.gate = gate
        self.stall = stall
        self.calls: List[dict] = []

    async def open_stream(self, messages, agent_type, include_analysis=False):
        self.calls.append({
            "messages": messages,
            "agent_type": agent_type,
            "include_analysis": include_analysis,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self._stream()

    async def _stream(self):
        for chunk in self.chunks:
            yield chunk
        if self.fail_after is not None:
            raise self.fail_after
        if self.stall:
            await asyncio.sleep(3600)

    async def close(self):
        pass


class UpstreamStub:
    """Fake completion provider served by aiohttp's test server."""

    def __init__(self):
        self.statuses: List[int] = []
        self.chunks: List[bytes] = [HELLO_STREAM]
        self.requests: List[dict] = []
        self.headers: List[dict] = []
        self.url = ""

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(await request.json())
        self.headers.append(dict(request.headers))
        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return web.json_response({"error": "upstream says no"}, status=status)

        response = web.StreamResponse(status=200, headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        for chunk in self.chunks:
            await response.write(chunk)
        await response.write_eof()
        return response


@pytest.fixture
async def upstream():
    stub = UpstreamStub()
    app = web.Application()
    app.router.add_post("/v1/chat/completions", stub.handle)
    server = TestServer(app)
    await server.start_server()
    stub.url = str(server.make_url("/v1/chat/completions"))
    yield stub
    await server.close()
