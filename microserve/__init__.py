"""microserve - async request handlers as raw HTTP servers.

Example usage:
    from microserve import NO_CONTENT, read_json, serve, run_server

    async def handler(request, response):
        data = await read_json(request)
        return {"received": data}

    asyncio.run(run_server(serve(handler)))
"""

from microserve.body import BodyCache, body_cache, read_body, read_json, read_text
from microserve.config import ServerConfig, load_config
from microserve.core.errors import (
    ConfigError,
    HeadersSentError,
    HTTPError,
    MicroError,
    create_error,
)
from microserve.dispatcher import NO_CONTENT, Dispatcher, run, serve
from microserve.http.transport import IncomingRequest, ServerResponse, run_server, start_server
from microserve.send import send, send_error

__version__ = "0.1.0"

__all__ = [
    # Dispatch
    "NO_CONTENT",
    "Dispatcher",
    "run",
    "serve",
    # Responses
    "send",
    "send_error",
    # Bodies
    "BodyCache",
    "body_cache",
    "read_body",
    "read_json",
    "read_text",
    # Errors
    "ConfigError",
    "HTTPError",
    "HeadersSentError",
    "MicroError",
    "create_error",
    # Transport
    "IncomingRequest",
    "ServerResponse",
    "run_server",
    "start_server",
    # Config
    "ServerConfig",
    "load_config",
]
