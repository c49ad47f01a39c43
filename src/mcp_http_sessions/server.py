"""Composition of the session layer into a Starlette application."""

from __future__ import annotations

import contextlib
import functools
import logging
from collections.abc import AsyncIterator
from typing import Any

from mcp.server.lowlevel.server import Server as MCPServer
from mcp.server.streamable_http import EventStore
from mcp.server.transport_security import TransportSecuritySettings
from mcp.shared.auth import OAuthMetadata, ProtectedResourceMetadata
from pydantic import BaseModel
from starlette.applications import Starlette
from starlette.routing import Route

from mcp_http_sessions.auth.middleware import BearerAuthMiddleware, BearerAuthOptions
from mcp_http_sessions.handlers import StreamableHTTPDispatcher
from mcp_http_sessions.session_manager import SessionManager
from mcp_http_sessions.settings import Settings
from mcp_http_sessions.transport import StreamableHTTPSessionTransport
from mcp_http_sessions.utilities.logging import configure_logging
from mcp_http_sessions.well_known import create_well_known_routes

logger = logging.getLogger(__name__)


class ServerStats(BaseModel):
    active_sessions: int
    endpoint: str


class McpHttpServer:
    """
    Serves an MCP server over stateful streamable HTTP.

    Wires the session manager, the per-verb dispatcher and the optional bearer
    gate behind one endpoint, plus the OAuth discovery documents when they are
    configured.

    Args:
        app: The MCP server instance
        settings: HTTP settings; read from the environment when omitted
        bearer_auth: Enables bearer token authorization on the endpoint
        authorization_server_metadata: Served at
            /.well-known/oauth-authorization-server when provided
        protected_resource_metadata: Served at
            /.well-known/oauth-protected-resource when provided
        event_store: Optional event store for resumability
        security_settings: Optional DNS rebinding protection settings
    """

    def __init__(
        self,
        app: MCPServer[Any, Any],
        settings: Settings | None = None,
        *,
        bearer_auth: BearerAuthOptions | None = None,
        authorization_server_metadata: OAuthMetadata | None = None,
        protected_resource_metadata: ProtectedResourceMetadata | None = None,
        event_store: EventStore | None = None,
        security_settings: TransportSecuritySettings | None = None,
    ):
        self.app = app
        self.settings = settings or Settings()
        self.bearer_auth = bearer_auth
        self.authorization_server_metadata = authorization_server_metadata
        self.protected_resource_metadata = protected_resource_metadata

        configure_logging(self.settings.log_level)

        self._session_manager = SessionManager(
            functools.partial(
                StreamableHTTPSessionTransport,
                app,
                json_response=self.settings.json_response,
                event_store=event_store,
                security_settings=security_settings,
            )
        )
        self._dispatcher = StreamableHTTPDispatcher(self._session_manager)

    @property
    def session_manager(self) -> SessionManager:
        return self._session_manager

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    def get_stats(self) -> ServerStats:
        return ServerStats(
            active_sessions=self._session_manager.get_session_count(),
            endpoint=self.endpoint,
        )

    @property
    def routes(self) -> list[Route]:
        routes = [
            Route(
                self.endpoint,
                endpoint=BearerAuthMiddleware(self._dispatcher, self.bearer_auth),
                methods=["GET", "POST", "DELETE"],
            )
        ]
        routes.extend(
            create_well_known_routes(
                authorization_server_metadata=self.authorization_server_metadata,
                protected_resource_metadata=self.protected_resource_metadata,
            )
        )
        return routes

    def starlette_app(self) -> Starlette:
        """Return a Starlette application serving the endpoint, with run() as its lifespan."""
        return Starlette(
            debug=self.settings.debug,
            routes=self.routes,
            lifespan=lambda app: self.run(),
        )

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        async with self._session_manager.run():
            logger.info(f"Serving streamable HTTP sessions at {self.endpoint}")
            yield

    async def shutdown(self) -> None:
        """
        Destroy all sessions and stop their protocol engine tasks.

        Hosts should await this during graceful termination, before closing
        the listening socket.
        """
        logger.info("Shutting down streamable HTTP sessions")
        await self._session_manager.destroy_all_sessions()
