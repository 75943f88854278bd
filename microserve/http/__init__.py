"""asyncio HTTP transport and raw body buffering."""

from microserve.http.raw_body import RawBodyError, read_raw_body
from microserve.http.transport import (
    Dispatcher,
    HttpParseError,
    IncomingRequest,
    RequestBody,
    ServerResponse,
    handle_connection,
    read_request_head,
    run_server,
    send_plain_response,
    start_server,
)

__all__ = [
    "Dispatcher",
    "HttpParseError",
    "IncomingRequest",
    "RawBodyError",
    "RequestBody",
    "ServerResponse",
    "handle_connection",
    "read_raw_body",
    "read_request_head",
    "run_server",
    "send_plain_response",
    "start_server",
]
