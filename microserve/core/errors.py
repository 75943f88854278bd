"""Typed exception hierarchy for microserve."""

from __future__ import annotations

from typing import Any


class MicroError(Exception):
    """Base class for all microserve errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(MicroError):
    """Raised for configuration issues (bad environment values, validation failure)."""


class HeadersSentError(MicroError):
    """Raised when a header is changed after the response head went out."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Cannot set header '{name}' after headers are sent")


class HTTPError(MicroError):
    """A failure that maps onto an HTTP status code.

    Attributes:
        status_code: HTTP status to answer with, or None when unclassified.
        message: Human-readable message, sent to the client when a status
            code is present.
        original_error: The exception that caused this one, if any.
    """

    def __init__(
        self,
        status_code: int | None,
        message: str,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.original_error = original_error


def create_error(
    code: int | None,
    message: str,
    original: BaseException | None = None,
) -> HTTPError:
    """Build an HTTPError carrying ``code`` and chaining ``original``.

    Example:
        raise create_error(403, "Forbidden")
    """
    err = HTTPError(code, message, original)
    if original is not None:
        err.__cause__ = original
    return err


def _lookup(obj: Any, *names: str) -> Any:
    """Return the first truthy attribute (or mapping key) of ``obj`` among ``names``."""
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value:
            return value
    return None


def error_status(error: Any) -> int | None:
    """Status code carried by ``error`` (``status_code`` first, then ``status``)."""
    status = _lookup(error, "status_code", "statusCode", "status")
    if status is None:
        return None
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def error_message(error: Any) -> str:
    """Message carried by ``error``, falling back to its string form."""
    message = _lookup(error, "message")
    if message is not None:
        return str(message)
    return str(error)
