"""End-to-end tests for McpHttpServer against a real MCP lowlevel server."""

import httpx
import pytest
from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.auth import OAuthMetadata, ProtectedResourceMetadata

from mcp_http_sessions.auth import AuthInfo, BearerAuthOptions, get_auth_info
from mcp_http_sessions.server import McpHttpServer
from mcp_http_sessions.session_manager import SessionEvent
from mcp_http_sessions.settings import Settings

ACCEPT = {"accept": "application/json, text/event-stream"}


def build_server(**kwargs) -> McpHttpServer:
    settings = kwargs.pop("settings", None) or Settings(json_response=True)
    return McpHttpServer(Server("test-server"), settings, **kwargs)


def test_default_stats():
    server = build_server()

    stats = server.get_stats()

    assert stats.endpoint == "/mcp"
    assert stats.active_sessions == 0
    assert server.session_manager is not None


def test_custom_endpoint():
    server = build_server(settings=Settings(endpoint="/custom-mcp", json_response=True))

    assert server.get_stats().endpoint == "/custom-mcp"
    assert [route.path for route in server.routes] == ["/custom-mcp"]


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MCP_HTTP_ENDPOINT", "/from-env")
    monkeypatch.setenv("MCP_HTTP_JSON_RESPONSE", "true")

    settings = Settings()

    assert settings.endpoint == "/from-env"
    assert settings.json_response is True


@pytest.mark.anyio
async def test_session_lifecycle(initialize_request, ping_request):
    server = build_server()
    created: list[str] = []
    destroyed: list[str] = []
    server.session_manager.on(SessionEvent.SESSION_CREATED, created.append)
    server.session_manager.on(SessionEvent.SESSION_DESTROYED, destroyed.append)

    async with server.run():
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=server.starlette_app()), base_url="http://testserver"
        ) as client:
            response = await client.post("/mcp", json=initialize_request, headers=ACCEPT)
            assert response.status_code == 200
            session_id = response.headers["mcp-session-id"]
            assert created == [session_id]
            assert server.get_stats().active_sessions == 1
            assert response.json()["result"]["serverInfo"]["name"] == "test-server"

            session_headers = {**ACCEPT, "mcp-session-id": session_id, "mcp-protocol-version": "2025-03-26"}
            response = await client.post("/mcp", json=ping_request, headers=session_headers)
            assert response.status_code == 200
            assert response.json()["id"] == 1

            response = await client.delete("/mcp", headers=session_headers)
            assert response.status_code == 200
            assert server.get_stats().active_sessions == 0
            assert destroyed == [session_id]

            response = await client.post("/mcp", json=ping_request, headers=session_headers)
            assert response.status_code == 400
            assert response.json()["error"]["code"] == -32003


@pytest.mark.anyio
async def test_shutdown_destroys_all_sessions(initialize_request):
    server = build_server()

    async with server.run():
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=server.starlette_app()), base_url="http://testserver"
        ) as client:
            for _ in range(2):
                response = await client.post("/mcp", json=initialize_request, headers=ACCEPT)
                assert response.status_code == 200
        assert server.get_stats().active_sessions == 2

        await server.shutdown()

        assert server.get_stats().active_sessions == 0


@pytest.mark.anyio
async def test_well_known_routes():
    server = build_server(
        authorization_server_metadata=OAuthMetadata(
            issuer="https://demo.example.org/",
            authorization_endpoint="https://demo.example.org/authorize",
            token_endpoint="https://demo.example.org/token",
            registration_endpoint="https://demo.example.org/register",
            response_types_supported=["code"],
        ),
        protected_resource_metadata=ProtectedResourceMetadata(
            resource="https://demo.example.org/mcp",
            authorization_servers=["https://demo.example.org/"],
        ),
    )

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=server.starlette_app()), base_url="http://testserver"
    ) as client:
        auth_response = await client.get("/.well-known/oauth-authorization-server")
        resource_response = await client.get("/.well-known/oauth-protected-resource")

    assert auth_response.status_code == 200
    auth_metadata = auth_response.json()
    assert auth_metadata["issuer"] == "https://demo.example.org/"
    assert auth_metadata["authorization_endpoint"] == "https://demo.example.org/authorize"
    assert auth_metadata["token_endpoint"] == "https://demo.example.org/token"
    assert auth_metadata["registration_endpoint"] == "https://demo.example.org/register"
    assert auth_metadata["response_types_supported"] == ["code"]
    assert auth_response.headers["cache-control"] == "public, max-age=3600"

    assert resource_response.status_code == 200
    resource_metadata = resource_response.json()
    assert resource_metadata["resource"] == "https://demo.example.org/mcp"
    assert resource_metadata["authorization_servers"] == ["https://demo.example.org/"]


@pytest.mark.anyio
async def test_well_known_routes_absent_by_default():
    server = build_server()

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=server.starlette_app()), base_url="http://testserver"
    ) as client:
        response = await client.get("/.well-known/oauth-protected-resource")

    assert response.status_code == 404


class ClientPerTokenVerifier:
    async def verify_access_token(self, token: str) -> AuthInfo:
        return AuthInfo(token=token, client_id=f"client-{token}", scopes=[])


@pytest.mark.anyio
async def test_tool_sees_caller_of_each_request(initialize_request):
    app = Server("test-server")

    @app.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [types.Tool(name="whoami", description="Report the caller", inputSchema={"type": "object"})]

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        auth_info = get_auth_info()
        return [types.TextContent(type="text", text=auth_info.client_id if auth_info else "anonymous")]

    server = McpHttpServer(
        app,
        Settings(json_response=True),
        bearer_auth=BearerAuthOptions(verifier=ClientPerTokenVerifier()),
    )

    async with server.run():
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=server.starlette_app()), base_url="http://testserver"
        ) as client:
            response = await client.post(
                "/mcp", json=initialize_request, headers={**ACCEPT, "authorization": "Bearer A"}
            )
            assert response.status_code == 200
            session_headers = {
                **ACCEPT,
                "mcp-session-id": response.headers["mcp-session-id"],
                "mcp-protocol-version": "2025-03-26",
            }

            response = await client.post(
                "/mcp",
                json={"jsonrpc": "2.0", "method": "notifications/initialized"},
                headers={**session_headers, "authorization": "Bearer A"},
            )
            assert response.status_code == 202

            for token in ["B", "A"]:
                response = await client.post(
                    "/mcp",
                    json={
                        "jsonrpc": "2.0",
                        "id": 2,
                        "method": "tools/call",
                        "params": {"name": "whoami", "arguments": {}},
                    },
                    headers={**session_headers, "authorization": f"Bearer {token}"},
                )
                assert response.status_code == 200
                assert response.json()["result"]["content"][0]["text"] == f"client-{token}"


@pytest.mark.anyio
async def test_session_lifecycle_over_sse(initialize_request):
    server = build_server(settings=Settings())

    async with server.run():
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=server.starlette_app()), base_url="http://testserver"
        ) as client:
            response = await client.post("/mcp", json=initialize_request, headers=ACCEPT)
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            assert '"serverInfo"' in response.text
            session_id = response.headers["mcp-session-id"]
            assert server.get_stats().active_sessions == 1

            response = await client.delete(
                "/mcp", headers={**ACCEPT, "mcp-session-id": session_id, "mcp-protocol-version": "2025-03-26"}
            )
            assert response.status_code == 200
            assert server.get_stats().active_sessions == 0
