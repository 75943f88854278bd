"""Content-Type header parsing (RFC 7231 media type with parameters)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# token / quoted-string grammar from RFC 7230 section 3.2.6
_PARAM_PATTERN = re.compile(
    r';[\x09\x20]*([!#$%&\'*+.^_`|~0-9A-Za-z-]+)[\x09\x20]*=[\x09\x20]*'
    r'("(?:[\x0b\x20\x21\x23-\x5b\x5d-\x7e\x80-\xff]|\\[\x0b\x20-\xff])*"|[!#$%&\'*+.^_`|~0-9A-Za-z-]+)'
    r'[\x09\x20]*'
)
_QUOTED_ESCAPE = re.compile(r'\\([\x0b\x20-\xff])')
_MEDIA_TYPE = re.compile(r'^[!#$%&\'*+.^_`|~0-9A-Za-z-]+/[!#$%&\'*+.^_`|~0-9A-Za-z-]+$')


@dataclass
class ContentType:
    """Parsed Content-Type header.

    Attributes:
        type: Lowercased media type, e.g. "application/json".
        parameters: Lowercased parameter names mapped to their values.
    """

    type: str
    parameters: dict[str, str] = field(default_factory=dict)


def parse_content_type(header: str) -> ContentType:
    """Parse a Content-Type header value.

    Raises:
        ValueError: If the media type or a parameter is malformed.
    """
    index = header.find(";")
    media_type = (header[:index] if index != -1 else header).strip()

    if not _MEDIA_TYPE.match(media_type):
        raise ValueError(f"Invalid media type: {media_type!r}")

    result = ContentType(type=media_type.lower())

    if index == -1:
        return result

    pos = index
    for match in _PARAM_PATTERN.finditer(header, index):
        if match.start() != pos:
            raise ValueError(f"Invalid parameter format in {header!r}")
        pos = match.end()
        key = match.group(1).lower()
        value = match.group(2)
        if value.startswith('"'):
            value = _QUOTED_ESCAPE.sub(r"\1", value[1:-1])
        result.parameters[key] = value

    if pos != len(header):
        raise ValueError(f"Invalid parameter format in {header!r}")

    return result
