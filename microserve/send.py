"""Response serialization and error mapping.

``send`` turns an arbitrary value into exactly one terminal response:

- None -> empty body
- bytes-like -> binary body (application/octet-stream by default)
- async iterable -> streamed body, no Content-Length
- binary file object -> streamed body, read in chunks off the event loop
- str -> text body, Content-Type left to the caller
- anything else -> JSON (application/json; charset=utf-8 by default)

``send_error`` maps a failure onto a status code and message and writes it
through ``send``.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import json
import logging
import traceback
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from microserve.core.errors import error_message, error_status

if TYPE_CHECKING:
    from microserve.http.transport import IncomingRequest, ServerResponse

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
JSON_UTF8 = "application/json; charset=utf-8"
GENERIC_ERROR_MESSAGE = "Internal Server Error"
FILE_CHUNK_SIZE = 64 * 1024


def is_stream(value: Any) -> bool:
    """True when ``value`` can be iterated asynchronously."""
    return value is not None and callable(getattr(value, "__aiter__", None))


def readable(value: Any) -> bool:
    """True for a stream that does not report itself as unreadable."""
    return is_stream(value) and getattr(value, "readable", True) is not False


def is_file(value: Any) -> bool:
    """True for a synchronous file object open for reading, such as ``open(p, "rb")``."""
    if getattr(value, "closed", False):
        return False
    read = getattr(value, "read", None)
    check = getattr(value, "readable", None)
    return callable(read) and callable(check) and check()


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_json(value: Any, development: bool = False) -> str:
    """Encode ``value`` as JSON text; indented in development mode.

    NaN and infinities are rejected, since they have no JSON spelling.

    Raises:
        TypeError, ValueError: If the value cannot be encoded.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    layout = {"indent": 2} if development else {"separators": (",", ":")}
    return json.dumps(
        value, ensure_ascii=False, allow_nan=False, default=_json_default, **layout
    )


def _default_header(response: ServerResponse, name: str, value: str) -> None:
    if not response.get_header(name):
        response.set_header(name, value)


async def _file_chunks(file: Any) -> AsyncIterator[bytes]:
    try:
        while chunk := await asyncio.to_thread(file.read, FILE_CHUNK_SIZE):
            yield chunk
    finally:
        file.close()


async def _stream(response: ServerResponse, code: int, chunks: AsyncIterator[Any]) -> None:
    # Headers wait for the first chunk so an iterator that fails at once
    # leaves the response untouched.
    try:
        first = await anext(chunks)
    except StopAsyncIteration:
        first = b""

    response.status_code = code
    _default_header(response, "Content-Type", OCTET_STREAM)
    await response.write(first)
    async for chunk in chunks:
        await response.write(chunk)
    await response.end()


async def send(
    response: ServerResponse,
    code: int,
    value: Any = None,
    *,
    development: bool = False,
) -> None:
    """Write ``value`` as the complete response with status ``code``.

    Caller-set headers are never overwritten. JSON is produced and a stream's
    first chunk is pulled before any header is touched, so a value that
    fails early raises without leaving the response half-configured.
    """
    if value is None:
        response.status_code = code
        await response.end()
        return

    if isinstance(value, (bytes, bytearray, memoryview)):
        body = bytes(value)
        response.status_code = code
        _default_header(response, "Content-Type", OCTET_STREAM)
        response.set_header("Content-Length", len(body))
        await response.end(body)
        return

    if readable(value):
        await _stream(response, code, aiter(value))
        return

    if is_file(value):
        async with contextlib.aclosing(_file_chunks(value)) as chunks:
            await _stream(response, code, chunks)
        return

    if isinstance(value, str):
        text = value
        content_type = None
    else:
        text = serialize_json(value, development)
        content_type = JSON_UTF8

    body = text.encode("utf-8")
    response.status_code = code
    if content_type is not None:
        _default_header(response, "Content-Type", content_type)
    response.set_header("Content-Length", len(body))
    await response.end(body)


async def send_error(
    request: IncomingRequest,
    response: ServerResponse,
    error: Any,
    *,
    development: bool = False,
) -> None:
    """Answer ``request`` with the status and message carried by ``error``.

    Errors without a status code become a 500 with a generic message; their
    details are only logged, or sent when ``development`` is set.
    """
    status_code = error_status(error)
    message = error_message(error) if status_code else GENERIC_ERROR_MESSAGE

    if isinstance(error, BaseException):
        logger.error(
            "Error handling %s %s: %s",
            request.method,
            request.path,
            error,
            exc_info=(type(error), error, error.__traceback__),
        )
    else:
        logger.warning("Raised error must be an instance of Exception, got %r", error)

    if response.headers_sent:
        logger.error(
            "Cannot send %s for %s %s: response already started, aborting connection",
            status_code or 500,
            request.method,
            request.path,
        )
        response.abort()
        return

    body = message
    if development and isinstance(error, BaseException):
        body = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    await send(response, status_code or 500, body, development=development)
