"""Core types: errors, content-type parsing and byte sizes."""

from microserve.core.bytesize import parse_bytes
from microserve.core.content_type import ContentType, parse_content_type
from microserve.core.errors import (
    ConfigError,
    HeadersSentError,
    HTTPError,
    MicroError,
    create_error,
)

__all__ = [
    "ConfigError",
    "ContentType",
    "HTTPError",
    "HeadersSentError",
    "MicroError",
    "create_error",
    "parse_bytes",
    "parse_content_type",
]
