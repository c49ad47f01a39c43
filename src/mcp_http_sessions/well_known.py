"""OAuth discovery documents served next to the MCP endpoint."""

from dataclasses import dataclass

from mcp.shared.auth import OAuthMetadata, ProtectedResourceMetadata
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"
PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"


@dataclass
class MetadataHandler:
    metadata: OAuthMetadata | ProtectedResourceMetadata

    async def handle(self, request: Request) -> Response:
        return JSONResponse(
            self.metadata.model_dump(mode="json", exclude_none=True),
            headers={"Cache-Control": "public, max-age=3600"},  # Cache for 1 hour
        )


def create_well_known_routes(
    authorization_server_metadata: OAuthMetadata | None = None,
    protected_resource_metadata: ProtectedResourceMetadata | None = None,
) -> list[Route]:
    routes: list[Route] = []
    if authorization_server_metadata is not None:
        routes.append(
            Route(
                AUTHORIZATION_SERVER_PATH,
                endpoint=MetadataHandler(authorization_server_metadata).handle,
                methods=["GET"],
            )
        )
    if protected_resource_metadata is not None:
        routes.append(
            Route(
                PROTECTED_RESOURCE_PATH,
                endpoint=MetadataHandler(protected_resource_metadata).handle,
                methods=["GET"],
            )
        )
    return routes
