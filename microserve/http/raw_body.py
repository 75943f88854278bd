"""Buffer a request body stream into memory with a size limit."""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Protocol

from microserve.core.bytesize import parse_bytes
from microserve.core.errors import MicroError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ByteStream(Protocol):
    """Anything with an asyncio-style ``read`` that returns b"" at the end."""

    async def read(self, n: int = -1) -> bytes: ...


class RawBodyError(MicroError):
    """Raised when a body cannot be buffered.

    Attributes:
        status_code: Suggested HTTP status for the failure.
        type: Machine-readable reason ("entity.too.large", "request.size.invalid",
            "request.aborted", "encoding.unsupported").
    """

    def __init__(self, status_code: int, type: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.type = type


async def read_raw_body(
    stream: ByteStream,
    *,
    limit: int | str | None = None,
    length: int | str | None = None,
    encoding: str | None = None,
) -> bytes:
    """Read ``stream`` to the end and return its bytes.

    Args:
        stream: Source of the body.
        limit: Maximum number of bytes to accept (int or size like "1mb").
        length: Expected length, usually the Content-Length header.
        encoding: Charset the caller will decode with; checked up front so an
            unknown charset fails before the stream is consumed.

    Raises:
        RawBodyError: On an oversized, truncated or aborted body, or an
            unsupported encoding.
    """
    limit_bytes = parse_bytes(limit) if limit is not None else None
    try:
        expected = int(length) if length not in (None, "") else None
    except ValueError as e:
        raise RawBodyError(400, "request.size.invalid", f"Invalid content length: {length!r}") from e

    if encoding is not None:
        try:
            codecs.lookup(encoding)
        except LookupError as e:
            raise RawBodyError(
                415, "encoding.unsupported", f"Unsupported charset {encoding.upper()!r}"
            ) from e

    if limit_bytes is not None and expected is not None and expected > limit_bytes:
        raise RawBodyError(413, "entity.too.large", "Request entity too large")

    chunks: list[bytes] = []
    received = 0
    while True:
        try:
            chunk = await stream.read(CHUNK_SIZE)
        except (ConnectionError, asyncio.IncompleteReadError, TimeoutError) as e:
            raise RawBodyError(400, "request.aborted", "Request aborted") from e

        if not chunk:
            break

        received += len(chunk)
        if limit_bytes is not None and received > limit_bytes:
            raise RawBodyError(413, "entity.too.large", "Request entity too large")
        chunks.append(chunk)

    if expected is not None and received != expected:
        raise RawBodyError(
            400,
            "request.size.invalid",
            f"Request size did not match content length: expected {expected}, got {received}",
        )

    logger.debug("Buffered request body: %d bytes", received)
    return b"".join(chunks)
