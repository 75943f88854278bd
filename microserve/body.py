"""Request body decoders backed by a per-request cache.

The first decoder call for a request buffers the whole body; later calls,
whatever the decoder, reuse the cached bytes. The request stream is therefore
read at most once, so ``read_text`` and ``read_json`` can both be used on
the same request.
"""

from __future__ import annotations

import json
import logging
import weakref
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from microserve.core.bytesize import parse_bytes
from microserve.core.content_type import parse_content_type
from microserve.core.errors import HTTPError, create_error
from microserve.http.raw_body import RawBodyError, read_raw_body

if TYPE_CHECKING:
    from microserve.http.transport import IncomingRequest

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = "1mb"
DEFAULT_CONTENT_TYPE = "text/plain"


class BodyCache:
    """Raw request bodies keyed by request identity.

    Entries are weakly keyed, so an abandoned request never pins its body;
    the dispatcher also discards entries as soon as the response finishes or
    the connection closes.
    """

    def __init__(self) -> None:
        self._bodies: weakref.WeakKeyDictionary[Any, bytes] = weakref.WeakKeyDictionary()

    def get(self, request: Any) -> bytes | None:
        return self._bodies.get(request)

    def set(self, request: Any, body: bytes) -> None:
        self._bodies[request] = body

    def discard(self, request: Any) -> None:
        self._bodies.pop(request, None)

    def __contains__(self, request: Any) -> bool:
        return request in self._bodies

    def __len__(self) -> int:
        return len(self._bodies)


body_cache = BodyCache()


def _identity(body: bytes) -> bytes:
    return body


def _request_charset(request: IncomingRequest) -> str | None:
    header = request.headers.get("content-type") or DEFAULT_CONTENT_TYPE
    try:
        return parse_content_type(header).parameters.get("charset")
    except ValueError as e:
        raise create_error(400, "Invalid Content-Type", e) from e


def _apply(parse: Callable[[bytes], Any], body: bytes) -> Any:
    try:
        return parse(body)
    except HTTPError:
        raise
    except Exception as e:
        raise create_error(400, "Invalid body", e) from e


async def read_body(
    request: IncomingRequest,
    *,
    limit: int | str = DEFAULT_LIMIT,
    encoding: str | None = None,
    parse: Callable[[bytes], Any] | None = None,
) -> Any:
    """Buffer the request body once and return ``parse`` applied to it.

    Args:
        request: The request whose body to read.
        limit: Maximum body size (bytes or a size such as "1mb").
        encoding: Charset to validate; defaults to the Content-Type charset.
        parse: Transform of the raw bytes. Applied on every call, so it must
            not depend on anything but its argument.

    Raises:
        HTTPError: 413 when the body exceeds ``limit``, 400 for any other
            read, content-type or parse failure, 500 for a malformed ``limit``.
    """
    parse = parse or _identity
    try:
        parse_bytes(limit)
    except ValueError as e:
        raise create_error(500, f"Invalid body limit: {limit!r}", e) from e

    cached = body_cache.get(request)
    if cached is not None:
        logger.debug("Using cached body for %s %s", request.method, request.path)
        return _apply(parse, cached)

    if encoding is None:
        encoding = _request_charset(request)

    try:
        raw = await read_raw_body(
            request.body,
            limit=limit,
            length=request.headers.get("content-length"),
            encoding=encoding,
        )
    except RawBodyError as e:
        if e.type == "entity.too.large":
            raise create_error(413, f"Body exceeded {limit} limit", e) from e
        raise create_error(400, "Invalid body", e) from e

    body_cache.set(request, raw)
    return _apply(parse, raw)


async def read_text(
    request: IncomingRequest,
    *,
    limit: int | str = DEFAULT_LIMIT,
    encoding: str | None = None,
) -> str:
    """Return the request body decoded as text.

    The charset is ``encoding`` if given, else the Content-Type charset,
    else UTF-8.
    """
    if encoding is None:
        encoding = _request_charset(request)
    charset = encoding or "utf-8"

    def decode(body: bytes) -> str:
        try:
            return body.decode(charset)
        except UnicodeDecodeError as e:
            raise create_error(400, f"Invalid {charset} body", e) from e

    return await read_body(request, limit=limit, encoding=encoding, parse=decode)


def parse_json(text: str) -> Any:
    """json.loads that fails with a 400 HTTPError."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise create_error(400, "Invalid JSON", e) from e


async def read_json(
    request: IncomingRequest,
    *,
    limit: int | str = DEFAULT_LIMIT,
    encoding: str | None = None,
) -> Any:
    """Return the request body decoded as JSON."""
    text = await read_text(request, limit=limit, encoding=encoding)
    return parse_json(text)
