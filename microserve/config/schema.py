"""Pydantic models for microserve configuration validation."""

from pydantic import BaseModel, ConfigDict, Field


class ServerConfig(BaseModel):
    """Configuration for a served handler.

    Read once at startup and passed explicitly to the dispatcher, so request
    handling never consults the process environment.

    Example:
        config = ServerConfig(development=True, port=3000)
        dispatcher = serve(handler, config)
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    development: bool = False
    """Pretty-print JSON responses and send tracebacks in error bodies."""

    host: str = "127.0.0.1"
    """Host address to bind to (use 0.0.0.0 for all interfaces)."""

    port: int = Field(default=3000, ge=0, le=65535)
    """Port number for the HTTP server. 0 picks an ephemeral port."""

    max_concurrent: int = Field(default=32, ge=1)
    """Maximum number of requests handled at the same time."""

    read_timeout: float = Field(default=30.0, gt=0)
    """Seconds to wait for each line of the request head."""

    response_timeout: float | None = Field(default=30.0, gt=0)
    """Seconds to wait for a handler that took over the response to end it.
    None waits until the client disconnects."""
