"""Turn a request handler into a transport callback.

A handler receives ``(request, response)`` and may be sync or async. Its
result decides what is written:

- ``NO_CONTENT`` -> 204 with an empty body
- ``None`` -> nothing; the handler owns the response (streaming, custom writes)
- anything else -> ``send(response, response.status_code, value)``

A raised exception is mapped to an error response by ``send_error``.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Final

from microserve.body import body_cache
from microserve.config.schema import ServerConfig
from microserve.send import send, send_error

if TYPE_CHECKING:
    from microserve.http.transport import IncomingRequest, ServerResponse

logger = logging.getLogger(__name__)

Handler = Callable[["IncomingRequest", "ServerResponse"], Any]


class _NoContent:
    """Type of the NO_CONTENT sentinel."""

    def __repr__(self) -> str:
        return "NO_CONTENT"


NO_CONTENT: Final = _NoContent()


async def run(
    request: IncomingRequest,
    response: ServerResponse,
    handler: Handler,
    config: ServerConfig | None = None,
) -> None:
    """Invoke ``handler`` and write its outcome to ``response``.

    Never raises for handler failures: they end up as error responses.
    The cached body of ``request`` is released when the response finishes
    or the connection closes, whichever happens first.
    """
    development = config.development if config is not None else False

    def clear_body_cache() -> None:
        body_cache.discard(request)

    response.on("finish", clear_body_cache)
    response.on("close", clear_body_cache)

    try:
        value = handler(request, response)
        if inspect.isawaitable(value):
            value = await value

        if value is NO_CONTENT:
            await send(response, 204, None, development=development)
        elif value is not None:
            await send(response, response.status_code or 200, value, development=development)
        else:
            logger.debug("Handler returned None for %s %s", request.method, request.path)
    except Exception as e:
        await send_error(request, response, e, development=development)


class Dispatcher:
    """A handler bound to its configuration, callable by the transport.

    Example:
        dispatcher = Dispatcher(handler, ServerConfig(development=True))
        await run_server(dispatcher, dispatcher.config)
    """

    def __init__(self, handler: Handler, config: ServerConfig | None = None) -> None:
        self.handler = handler
        self.config = config or ServerConfig()

    async def __call__(self, request: IncomingRequest, response: ServerResponse) -> None:
        await run(request, response, self.handler, self.config)


def serve(handler: Handler, config: ServerConfig | None = None) -> Dispatcher:
    """Wrap ``handler`` for use with ``run_server``."""
    return Dispatcher(handler, config)
