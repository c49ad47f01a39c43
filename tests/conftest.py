from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from anyio.abc import TaskGroup
from starlette.types import Message, Receive, Scope, Send

from mcp_http_sessions.session_manager import SessionManager
from mcp_http_sessions.transport import CloseCallback, ErrorCallback, SessionInitializedCallback


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def initialize_request() -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "ExampleClient", "version": "1.0.0"},
        },
    }


@pytest.fixture
def ping_request() -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {}}


class FakeTransport:
    """Transport that answers 200 and takes its candidate id on the first request."""

    def __init__(
        self,
        *,
        session_id_generator: Callable[[], str],
        on_session_initialized: SessionInitializedCallback,
        on_close: CloseCallback,
        on_error: ErrorCallback,
        reject_initialize: bool = False,
        fail_requests: bool = False,
    ):
        self.session_id: str | None = None
        self.candidate_id = session_id_generator()
        self.on_session_initialized = on_session_initialized
        self.on_close = on_close
        self.on_error = on_error
        self.reject_initialize = reject_initialize
        self.fail_requests = fail_requests
        self.started = False
        self.close_calls = 0
        self.requests: list[tuple[str, bytes]] = []

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def start(self, task_group: TaskGroup) -> None:
        self.started = True

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        body = b""
        while True:
            message = await receive()
            body += message.get("body", b"")
            if not message.get("more_body", False):
                break
        self.requests.append((scope["method"], body))

        if self.fail_requests:
            raise RuntimeError("transport failure")

        if self.session_id is None:
            if self.reject_initialize:
                await send({"type": "http.response.start", "status": 406, "headers": []})
                await send({"type": "http.response.body", "body": b""})
                return
            self.session_id = self.candidate_id
            await self.on_session_initialized(self.session_id)

        await send(
            {
                "type": "http.response.start",
                "status": 200,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"mcp-session-id", self.session_id.encode()),
                ],
            }
        )
        await send({"type": "http.response.body", "body": b"{}"})

    async def close(self) -> None:
        self.close_calls += 1


class FakeTransportFactory:
    def __init__(self):
        self.transports: list[FakeTransport] = []
        self.fail_start = False
        self.reject_initialize = False
        self.fail_requests = False

    def __call__(self, **callbacks) -> FakeTransport:
        transport = FakeTransport(
            reject_initialize=self.reject_initialize,
            fail_requests=self.fail_requests,
            **callbacks,
        )
        if self.fail_start:

            async def refuse(task_group: TaskGroup) -> None:
                raise ConnectionError("protocol engine unavailable")

            transport.start = refuse  # type: ignore[method-assign]
        self.transports.append(transport)
        return transport


async def _complete_handshake(transport: FakeTransport) -> str:
    sent: list[Message] = []

    async def receive() -> Message:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message: Message) -> None:
        sent.append(message)

    await transport.handle_request({"type": "http", "method": "POST", "headers": []}, receive, send)
    assert transport.session_id is not None
    return transport.session_id


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
async def running_manager(transport_factory: FakeTransportFactory):
    manager = SessionManager(transport_factory)
    async with manager.run():
        yield manager


@pytest.fixture
def complete_handshake() -> Callable[[FakeTransport], Awaitable[str]]:
    """Drive a fake transport through the initialize exchange and return its id."""
    return _complete_handshake
