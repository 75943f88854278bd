"""Pure asyncio HTTP/1.1 transport for microserve handlers.

This module accepts connections, parses the request head, and hands the
dispatcher a request handle plus a response sink. Bodies are not read here:
the request exposes them as a single-use stream so the body decoders decide
when (and whether) to consume them.

Every response is sent with ``Connection: close``; one request is served per
connection.

Example usage:
    dispatcher = serve(handler, config)
    await run_server(dispatcher, config)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

from microserve.config.schema import ServerConfig
from microserve.core.errors import HeadersSentError, MicroError

logger = logging.getLogger(__name__)

# HTTP header limits (DoS protection)
MAX_HEADERS_COUNT = 128
MAX_HEADER_NAME_LEN = 1024
MAX_HEADER_VALUE_LEN = 8192
MAX_TOTAL_HEADERS_SIZE = 32 * 1024
MAX_REQUEST_LINE_LEN = 8192

RESPONSE_EVENTS = ("finish", "close")


class HttpParseError(MicroError):
    """Raised when the request line or headers are malformed."""


class RequestBody:
    """Single-use view of the request body on a connection.

    Serves at most ``length`` bytes from the underlying reader, then b"".
    Reading again after the end was reported raises RuntimeError, so a
    second consumer of the same body fails loudly instead of hanging.
    """

    def __init__(self, reader: asyncio.StreamReader, length: int) -> None:
        self._reader = reader
        self._remaining = length
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def read(self, n: int = -1) -> bytes:
        if self._exhausted:
            raise RuntimeError("Request body has already been consumed")
        if self._remaining <= 0:
            self._exhausted = True
            return b""

        size = self._remaining if n < 0 else min(n, self._remaining)
        chunk = await self._reader.read(size)
        if not chunk:
            raise ConnectionResetError(
                f"Connection closed with {self._remaining} body bytes outstanding"
            )
        self._remaining -= len(chunk)
        return chunk


@dataclass(eq=False)
class IncomingRequest:
    """Parsed HTTP request head plus its unread body.

    Compared and hashed by identity, so it can key per-request tables.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: Request target (e.g., "/users?page=2")
        headers: Dict of lowercase header names to values
        body: Byte stream with an async ``read``
        client: Peer address, when known
    """

    method: str
    path: str
    headers: dict[str, str]
    body: Any
    client: tuple[str, int] | None = field(default=None)


class ServerResponse:
    """Writable response sink for a single request.

    The status line and headers are written lazily on the first ``write`` or
    on ``end``; after that, header changes raise HeadersSentError. Writes
    after the connection went away are dropped.

    Listeners registered with ``on("finish", ...)`` run when ``end`` completes;
    ``on("close", ...)`` listeners run when the connection is torn down.
    Each listener runs at most once.
    """

    def __init__(self, writer: asyncio.StreamWriter, method: str = "GET") -> None:
        self._writer = writer
        self._method = method.upper()
        self._headers: dict[str, tuple[str, str]] = {}
        self._listeners: dict[str, list[Callable[[], object]]] = {
            event: [] for event in RESPONSE_EVENTS
        }
        self._done = asyncio.Event()
        self.status_code = 200
        self.headers_sent = False
        self.finished = False
        self.closed = False

    # -- headers -------------------------------------------------------------

    def get_header(self, name: str) -> str | None:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def set_header(self, name: str, value: object) -> None:
        if self.headers_sent:
            raise HeadersSentError(name)
        self._headers[name.lower()] = (name, str(value))

    def remove_header(self, name: str) -> None:
        if self.headers_sent:
            raise HeadersSentError(name)
        self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> dict[str, str]:
        """Current headers keyed by the name they were set with."""
        return {name: value for name, value in self._headers.values()}

    # -- events --------------------------------------------------------------

    def on(self, event: str, callback: Callable[[], object]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown response event: {event!r}")
        self._listeners[event].append(callback)

    def _emit(self, event: str) -> None:
        listeners, self._listeners[event] = self._listeners[event], []
        for callback in listeners:
            try:
                callback()
            except Exception as e:
                logger.warning("Response %r listener failed: %s", event, e, exc_info=True)

    # -- writing -------------------------------------------------------------

    @property
    def writable(self) -> bool:
        return not self.finished and not self.closed and not self._writer.is_closing()

    def _head(self) -> bytes:
        try:
            reason = HTTPStatus(self.status_code).phrase
        except ValueError:
            reason = "Unknown"
        lines = [f"HTTP/1.1 {self.status_code} {reason}"]
        lines.extend(
            f"{name}: {value}"
            for key, (name, value) in self._headers.items()
            if key != "connection"
        )
        lines.append("Connection: close")
        lines.extend(["", ""])
        return "\r\n".join(lines).encode("latin-1")

    async def write(self, chunk: bytes | str) -> None:
        """Write part of the body, sending the head first if needed."""
        if self.finished:
            raise RuntimeError("Cannot write after the response has ended")
        if not self.writable:
            logger.debug("Dropping write to closed connection")
            return

        data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
        if not self.headers_sent:
            self._writer.write(self._head())
            self.headers_sent = True
        if data and self._method != "HEAD":
            self._writer.write(data)

        try:
            await self._writer.drain()
        except ConnectionError as e:
            logger.debug("Client disconnected during write: %s", e)
            self.mark_closed()

    async def end(self, chunk: bytes | str | None = None) -> None:
        """Finish the response, optionally writing a last chunk."""
        if self.finished:
            logger.debug("Response already ended")
            return
        await self.write(chunk if chunk is not None else b"")
        self.finished = True
        self._done.set()
        self._emit("finish")

    async def wait_done(self) -> None:
        """Wait until the response has ended or the connection closed."""
        await self._done.wait()

    def abort(self) -> None:
        """Drop the connection without completing the response."""
        if not self._writer.is_closing():
            self._writer.close()
        self.mark_closed()

    def mark_closed(self) -> None:
        """Record that the connection is gone and notify ``close`` listeners."""
        if self.closed:
            return
        self.closed = True
        self._done.set()
        self._emit("close")


Dispatcher = Callable[[IncomingRequest, ServerResponse], Awaitable[None]]


async def _read_line(reader: asyncio.StreamReader, timeout: float, what: str) -> bytes:
    try:
        return await asyncio.wait_for(reader.readline(), timeout=timeout)
    except TimeoutError:
        raise HttpParseError(f"{what} timeout") from None
    except ValueError as e:
        # StreamReader limit overrun
        raise HttpParseError(f"{what} too long") from e


async def read_request_head(
    reader: asyncio.StreamReader,
    timeout: float = 30.0,
) -> tuple[str, str, dict[str, str]]:
    """Read the request line and headers, leaving the body on the stream.

    Args:
        reader: The asyncio StreamReader to read from.
        timeout: Seconds to wait for each line.

    Returns:
        Tuple of (method, path, headers) with lowercase header names.

    Raises:
        HttpParseError: If the request line or headers are malformed.
    """
    request_line = await _read_line(reader, timeout, "Request")
    if not request_line:
        raise HttpParseError("Empty request")

    if len(request_line) > MAX_REQUEST_LINE_LEN:
        raise HttpParseError(f"Request line too long: {len(request_line)} > {MAX_REQUEST_LINE_LEN}")

    # "POST /path HTTP/1.1\r\n"
    try:
        request_line_str = request_line.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid request encoding: {e}") from e
    parts = request_line_str.split(" ")
    if len(parts) != 3:
        raise HttpParseError(f"Invalid request line: {request_line_str}")
    method, path, version = parts
    if version not in ("HTTP/1.1", "HTTP/1.0"):
        raise HttpParseError(f"Unsupported HTTP version: {version}")

    headers: dict[str, str] = {}
    total_headers_size = 0

    while True:
        header_line = await _read_line(reader, timeout, "Header read")
        if not header_line or header_line in (b"\r\n", b"\n"):
            break

        total_headers_size += len(header_line)
        if total_headers_size > MAX_TOTAL_HEADERS_SIZE:
            raise HttpParseError(
                f"Total headers size exceeds limit: {total_headers_size} > {MAX_TOTAL_HEADERS_SIZE}"
            )

        header_str = header_line.decode("latin-1").strip()

        if ":" not in header_str:
            continue  # Skip malformed headers

        name, value = header_str.split(":", 1)
        name = name.strip()
        value = value.strip()

        if len(name) > MAX_HEADER_NAME_LEN:
            raise HttpParseError(f"Header name too long: {len(name)} > {MAX_HEADER_NAME_LEN}")
        if len(value) > MAX_HEADER_VALUE_LEN:
            raise HttpParseError(f"Header value too long: {len(value)} > {MAX_HEADER_VALUE_LEN}")
        if len(headers) >= MAX_HEADERS_COUNT:
            raise HttpParseError(f"Too many headers: exceeds limit of {MAX_HEADERS_COUNT}")

        headers[name.lower()] = value

    return method.upper(), path, headers


def _content_length(headers: dict[str, str]) -> int:
    if "chunked" in headers.get("transfer-encoding", "").lower():
        raise HttpParseError("Chunked request bodies are not supported")

    content_length_str = headers.get("content-length", "0") or "0"
    try:
        content_length = int(content_length_str)
    except ValueError as e:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}") from e
    if content_length < 0:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}")
    return content_length


async def send_plain_response(
    writer: asyncio.StreamWriter,
    status: int,
    body: str,
) -> None:
    """Write a complete text/plain response outside the dispatcher."""
    body_bytes = body.encode("utf-8")
    lines = [
        f"HTTP/1.1 {status} {HTTPStatus(status).phrase}",
        "Content-Type: text/plain; charset=utf-8",
        f"Content-Length: {len(body_bytes)}",
        "Connection: close",
        "",
        "",
    ]
    writer.write("\r\n".join(lines).encode("latin-1") + body_bytes)
    await writer.drain()


async def handle_connection(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    dispatcher: Dispatcher,
    config: ServerConfig,
) -> None:
    """Serve one request on a freshly accepted connection.

    Parses the head, runs the dispatcher, and waits (up to
    ``config.response_timeout``) for a handler that kept the response open to
    end it. The connection is always closed afterwards and ``close``
    listeners are notified.
    """
    response: ServerResponse | None = None
    try:
        try:
            method, path, headers = await read_request_head(reader, config.read_timeout)
            length = _content_length(headers)
        except HttpParseError as e:
            logger.debug("Rejecting malformed request: %s", e)
            await send_plain_response(writer, 400, e.message)
            return

        request = IncomingRequest(
            method=method,
            path=path,
            headers=headers,
            body=RequestBody(reader, length),
            client=writer.get_extra_info("peername"),
        )
        response = ServerResponse(writer, method=method)
        logger.debug("%s %s", method, path)

        try:
            await dispatcher(request, response)
        except Exception:
            logger.exception("Unhandled error serving %s %s", method, path)
            response.abort()
            return

        if not response.finished and not response.closed:
            try:
                await asyncio.wait_for(response.wait_done(), timeout=config.response_timeout)
            except TimeoutError:
                logger.warning(
                    "Response to %s %s not ended within %ss, closing connection",
                    method,
                    path,
                    config.response_timeout,
                )
    except ConnectionError as e:
        logger.debug("Connection error: %s", e)
    finally:
        try:
            writer.close()
            await writer.wait_closed()
        except Exception as close_err:
            logger.debug("Connection close failed (already closed?): %s", close_err)
        if response is not None:
            response.mark_closed()


async def start_server(
    dispatcher: Dispatcher,
    config: ServerConfig | None = None,
) -> asyncio.Server:
    """Bind a listening server for ``dispatcher`` and return it.

    Concurrency is capped by ``config.max_concurrent``.
    """
    config = config or ServerConfig()
    semaphore = asyncio.Semaphore(config.max_concurrent)

    async def client_handler(
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        async with semaphore:
            await handle_connection(reader, writer, dispatcher, config)

    return await asyncio.start_server(client_handler, host=config.host, port=config.port)


async def run_server(
    dispatcher: Dispatcher,
    config: ServerConfig | None = None,
    started_event: asyncio.Event | None = None,
) -> None:
    """Serve ``dispatcher`` until cancelled.

    Args:
        dispatcher: Callable produced by ``serve``.
        config: Bind address and limits. Defaults to ServerConfig().
        started_event: Set once the socket is bound and listening.
    """
    config = config or ServerConfig()
    server = await start_server(dispatcher, config)

    if started_event:
        started_event.set()

    addr = server.sockets[0].getsockname() if server.sockets else (config.host, config.port)
    logger.info("HTTP server running at http://%s:%s/", addr[0], addr[1])
    if config.development:
        logger.info("Development mode enabled")

    async with server:
        try:
            await server.serve_forever()
        finally:
            logger.info("HTTP server stopped")
