"""Per-session transports.

A transport is created before its session id is known: the id is assigned by
the initialize exchange and only then published to the session table. The
production implementation wraps the MCP SDK's StreamableHTTPServerTransport
and runs the protocol engine for the session as a background task.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Awaitable, Callable
from http import HTTPStatus
from typing import Any, Protocol

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel.server import Server as MCPServer
from mcp.server.streamable_http import (
    MCP_SESSION_ID_HEADER,
    EventStore,
    StreamableHTTPServerTransport,
)
from mcp.server.transport_security import TransportSecuritySettings
from starlette.datastructures import Headers
from starlette.types import Message, Receive, Scope, Send

from mcp_http_sessions.auth.middleware import auth_info_var

logger = logging.getLogger(__name__)

SessionInitializedCallback = Callable[[str], Awaitable[None]]
CloseCallback = Callable[[], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


def generate_session_id() -> str:
    """Return a fresh, unguessable session id."""
    return secrets.token_hex(16)


class Transport(Protocol):
    """What the session layer needs from a per-session transport."""

    session_id: str | None

    async def start(self, task_group: TaskGroup) -> None: ...

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None: ...

    async def close(self) -> None: ...


class TransportFactory(Protocol):
    def __call__(
        self,
        *,
        session_id_generator: Callable[[], str],
        on_session_initialized: SessionInitializedCallback,
        on_close: CloseCallback,
        on_error: ErrorCallback,
    ) -> Transport: ...


class StreamableHTTPSessionTransport:
    """
    Transport for a single stateful session, backed by the MCP SDK.

    The session id handed to the SDK transport stays private until the SDK
    answers the initialize request. ``on_session_initialized`` is awaited
    right before that response starts, so the id is resolvable by the time
    the client can read it.

    Args:
        app: The MCP server that serves the session
        session_id_generator: Source of the candidate session id
        on_session_initialized: Awaited once with the assigned session id
        on_close: Awaited once when the protocol engine task ends
        on_error: Awaited when the protocol engine task crashes
        json_response: Whether to answer POSTs with JSON instead of SSE
        event_store: Optional event store for resumability
        security_settings: Optional DNS rebinding protection settings
    """

    def __init__(
        self,
        app: MCPServer[Any, Any],
        *,
        session_id_generator: Callable[[], str] = generate_session_id,
        on_session_initialized: SessionInitializedCallback,
        on_close: CloseCallback,
        on_error: ErrorCallback,
        json_response: bool = False,
        event_store: EventStore | None = None,
        security_settings: TransportSecuritySettings | None = None,
    ):
        self.app = app
        self.session_id: str | None = None
        self._on_session_initialized = on_session_initialized
        self._on_close = on_close
        self._on_error = on_error
        self._closed = False
        self._http_transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id_generator(),
            is_json_response_enabled=json_response,
            event_store=event_store,
            security_settings=security_settings,
        )

    async def start(self, task_group: TaskGroup) -> None:
        """Connect the transport and start the protocol engine for it."""
        # The engine outlives the request that creates it and must not inherit its auth info
        token = auth_info_var.set(None)
        try:
            await task_group.start(self._run_server)
        finally:
            auth_info_var.reset(token)

    async def _run_server(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        async with self._http_transport.connect() as streams:
            read_stream, write_stream = streams
            task_status.started()
            try:
                await self.app.run(
                    read_stream,
                    write_stream,
                    self.app.create_initialization_options(),
                    stateless=False,
                )
            except Exception as exc:
                logger.exception(f"Session {self.session_id} crashed")
                with anyio.CancelScope(shield=True):
                    await self._on_error(exc)
            finally:
                with anyio.CancelScope(shield=True):
                    await self._on_close()

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self.session_id is None:
            send = self._publish_on_response(send)
        await self._http_transport.handle_request(scope, receive, send)

    def _publish_on_response(self, send: Send) -> Send:
        expected_id = self._http_transport.mcp_session_id

        async def publishing_send(message: Message) -> None:
            if (
                self.session_id is None
                and message["type"] == "http.response.start"
                and message["status"] < HTTPStatus.BAD_REQUEST
            ):
                session_id = Headers(raw=message.get("headers", [])).get(MCP_SESSION_ID_HEADER)
                if session_id is not None and session_id == expected_id:
                    self.session_id = session_id
                    await self._on_session_initialized(session_id)
            await send(message)

        return publishing_send

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._http_transport.terminate()
