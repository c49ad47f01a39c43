"""
Streamable HTTP MCP server with session tracking and optional bearer auth.

Usage:
    python -m mcp_simple_sessions --port=3000 --token=secret-token
"""

import logging

import click
import mcp.types as types
import uvicorn
from mcp.server.lowlevel import Server
from mcp.shared.auth import ProtectedResourceMetadata

from mcp_http_sessions import (
    AuthInfo,
    BearerAuthOptions,
    McpHttpServer,
    SessionEvent,
    Settings,
)
from mcp_http_sessions.errors import InvalidTokenError

logger = logging.getLogger(__name__)


class StaticTokenVerifier:
    """Accepts a single pre-shared token. For demonstration only."""

    def __init__(self, token: str):
        self.token = token

    async def verify_access_token(self, token: str) -> AuthInfo:
        if token != self.token:
            raise InvalidTokenError("Unknown token")
        return AuthInfo(token=token, client_id="example-client", scopes=["mcp:tools"])


def create_mcp_server() -> Server:
    app = Server("mcp-simple-sessions")

    @app.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name="echo",
                description="Echoes the given text back",
                inputSchema={
                    "type": "object",
                    "required": ["text"],
                    "properties": {"text": {"type": "string", "description": "Text to echo"}},
                },
            )
        ]

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        if name != "echo":
            raise ValueError(f"Unknown tool: {name}")
        return [types.TextContent(type="text", text=arguments["text"])]

    return app


@click.command()
@click.option("--port", default=3000, help="Port to listen on for HTTP")
@click.option("--token", default=None, help="Require this bearer token on every request")
@click.option(
    "--log-level",
    default="INFO",
    help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
@click.option("--json-response", is_flag=True, default=False, help="Enable JSON responses instead of SSE streams")
def main(port: int, token: str | None, log_level: str, json_response: bool) -> int:
    settings = Settings(port=port, log_level=log_level.upper(), json_response=json_response)
    server_url = f"http://{settings.host}:{settings.port}"

    bearer_auth = None
    protected_resource_metadata = None
    if token:
        bearer_auth = BearerAuthOptions(
            verifier=StaticTokenVerifier(token),
            required_scopes=["mcp:tools"],
            resource_metadata_url=f"{server_url}/.well-known/oauth-protected-resource",
        )
        protected_resource_metadata = ProtectedResourceMetadata(
            resource=f"{server_url}{settings.endpoint}",
            authorization_servers=[server_url],
            scopes_supported=["mcp:tools"],
        )

    server = McpHttpServer(
        create_mcp_server(),
        settings,
        bearer_auth=bearer_auth,
        protected_resource_metadata=protected_resource_metadata,
    )

    sessions = server.session_manager
    sessions.on(SessionEvent.SESSION_CREATED, lambda session_id: logger.info(f"MCP session created: {session_id}"))
    sessions.on(SessionEvent.SESSION_DESTROYED, lambda session_id: logger.info(f"MCP session destroyed: {session_id}"))
    sessions.on(
        SessionEvent.TRANSPORT_ERROR,
        lambda session_id, error: logger.error(f"MCP transport error in session {session_id}: {error}"),
    )

    uvicorn.run(server.starlette_app(), host=settings.host, port=settings.port)
    return 0
