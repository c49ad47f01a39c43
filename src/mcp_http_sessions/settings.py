from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Streamable HTTP server settings.

    All settings can be configured via environment variables with the prefix MCP_HTTP_.
    For example, MCP_HTTP_ENDPOINT=/custom-mcp will set endpoint="/custom-mcp".
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_HTTP_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 3000
    endpoint: str = Field("/mcp", description="Path of the streamable HTTP endpoint")

    json_response: bool = False
    """Answer POST requests with a single JSON body instead of an SSE stream."""
