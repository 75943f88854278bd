"""Shared pytest fixtures for microserve tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from microserve.http.transport import IncomingRequest, RequestBody, ServerResponse


class FakeWriter:
    """Stand-in for asyncio.StreamWriter that records written bytes."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        pass

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def get_extra_info(self, name: str, default: object = None) -> object:
        if name == "peername":
            return ("127.0.0.1", 50000)
        return default


class RawResponse:
    """Status, headers and body parsed back out of written bytes."""

    def __init__(self, raw: bytes) -> None:
        head, _, self.body = raw.partition(b"\r\n\r\n")
        lines = head.decode("latin-1").split("\r\n")
        self.status = int(lines[0].split(" ")[1])
        self.headers: dict[str, str] = {}
        for line in lines[1:]:
            name, _, value = line.partition(":")
            self.headers[name.strip().lower()] = value.strip()


@pytest.fixture
def make_request() -> Callable[..., IncomingRequest]:
    """Factory for requests whose body is fed into a real StreamReader.

    Must be called from inside a running event loop.
    """

    def factory(
        body: bytes = b"",
        headers: dict[str, str] | None = None,
        method: str = "POST",
        path: str = "/",
    ) -> IncomingRequest:
        reader = asyncio.StreamReader()
        reader.feed_data(body)
        reader.feed_eof()
        all_headers = {"content-length": str(len(body))}
        all_headers.update(headers or {})
        return IncomingRequest(
            method=method,
            path=path,
            headers=all_headers,
            body=RequestBody(reader, len(body)),
        )

    return factory


@pytest.fixture
def make_response() -> Callable[..., tuple[ServerResponse, FakeWriter]]:
    """Factory for a ServerResponse writing into a FakeWriter."""

    def factory(method: str = "GET") -> tuple[ServerResponse, FakeWriter]:
        writer = FakeWriter()
        return ServerResponse(writer, method=method), writer  # type: ignore[arg-type]

    return factory


@pytest.fixture
def parse_raw() -> Callable[[bytes], RawResponse]:
    """Parse bytes written by a ServerResponse."""
    return lambda raw: RawResponse(bytes(raw))


@pytest.fixture
def fake_writer() -> FakeWriter:
    """A fresh FakeWriter."""
    return FakeWriter()
