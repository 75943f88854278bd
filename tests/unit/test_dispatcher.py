"""Tests for the dispatcher (run / serve)."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from microserve.body import body_cache, read_json
from microserve.config.schema import ServerConfig
from microserve.core.errors import create_error
from microserve.dispatcher import NO_CONTENT, Dispatcher, run, serve


class TestRunSuccess:
    """Handler values become responses."""

    @pytest.mark.asyncio
    async def test_async_handler_value_sent_as_json(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            return {"ok": True}

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 200
        assert json.loads(raw.body) == {"ok": True}

    @pytest.mark.asyncio
    async def test_sync_handler_supported(self, make_request, make_response, parse_raw):
        def handler(request, response):
            return "plain text"

        response, writer = make_response()
        await run(make_request(), response, handler)
        assert parse_raw(writer.buffer).body == b"plain text"

    @pytest.mark.asyncio
    async def test_status_set_by_handler_is_used(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            response.status_code = 201
            return {"id": 7}

        response, writer = make_response()
        await run(make_request(), response, handler)
        assert parse_raw(writer.buffer).status == 201

    @pytest.mark.asyncio
    async def test_no_content_gives_204(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            response.status_code = 202
            return NO_CONTENT

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 204
        assert raw.body == b""

    @pytest.mark.asyncio
    async def test_none_leaves_response_alone(self, make_request, make_response):
        handler = AsyncMock(return_value=None)

        response, writer = make_response()
        await run(make_request(), response, handler)

        handler.assert_awaited_once()
        assert writer.buffer == bytearray()
        assert not response.finished
        assert not response.headers_sent

    @pytest.mark.asyncio
    async def test_handler_can_write_itself(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            response.set_header("Content-Type", "text/csv")
            await response.end(b"a,b\n1,2\n")

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.headers["content-type"] == "text/csv"
        assert raw.body == b"a,b\n1,2\n"

    @pytest.mark.asyncio
    async def test_development_mode_pretty_prints(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            return {"a": 1}

        response, writer = make_response()
        await run(make_request(), response, handler, ServerConfig(development=True))
        assert parse_raw(writer.buffer).body == b'{\n  "a": 1\n}'


class TestRunFailure:
    """Handler failures become error responses."""

    @pytest.mark.asyncio
    async def test_http_error_status_and_message(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            raise create_error(403, "Forbidden")

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 403
        assert raw.body == b"Forbidden"

    @pytest.mark.asyncio
    async def test_unclassified_error_is_500(self, make_request, make_response, parse_raw):
        def handler(request, response):
            raise KeyError("secret detail")

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 500
        assert raw.body == b"Internal Server Error"

    @pytest.mark.asyncio
    async def test_unserializable_return_is_500(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            return {"value": object()}

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 500
        assert raw.body == b"Internal Server Error"
        assert raw.headers["content-length"] == str(len(raw.body))

    @pytest.mark.asyncio
    async def test_stream_failing_before_first_chunk_is_plain_500(
        self, make_request, make_response, parse_raw
    ):
        async def chunks():
            raise OSError("disk gone")
            yield b"never"

        async def handler(request, response):
            return chunks()

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 500
        assert "content-type" not in raw.headers
        assert raw.body == b"Internal Server Error"

    @pytest.mark.asyncio
    async def test_nan_return_is_500(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            return {"ratio": float("nan")}

        response, writer = make_response()
        await run(make_request(), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 500
        assert raw.body == b"Internal Server Error"

    @pytest.mark.asyncio
    async def test_malformed_json_body_is_400(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            return await read_json(request)

        response, writer = make_response()
        await run(make_request(b"{invalid"), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 400
        assert raw.body == b"Invalid JSON"

    @pytest.mark.asyncio
    async def test_oversized_body_is_413(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            return await read_json(request, limit="10b")

        response, writer = make_response()
        await run(make_request(b'{"k":"vvvv"}'), response, handler)

        raw = parse_raw(writer.buffer)
        assert raw.status == 413
        assert raw.body == b"Body exceeded 10b limit"


class TestBodyCacheCleanup:
    """Cached bodies are released with the response."""

    @pytest.mark.asyncio
    async def test_released_on_finish(self, make_request, make_response):
        seen = {}

        async def handler(request, response):
            data = await read_json(request)
            seen["cached"] = request in body_cache
            return data

        request = make_request(b'{"a": 1}')
        response, _ = make_response()
        await run(request, response, handler)

        assert seen["cached"] is True
        assert request not in body_cache

    @pytest.mark.asyncio
    async def test_released_on_close(self, make_request, make_response):
        async def handler(request, response):
            await read_json(request)

        request = make_request(b'{"a": 1}')
        response, _ = make_response()
        await run(request, response, handler)

        assert request in body_cache
        response.mark_closed()
        assert request not in body_cache


class TestServe:
    """Tests for serve / Dispatcher."""

    def test_serve_returns_dispatcher(self):
        handler = MagicMock()
        dispatcher = serve(handler)
        assert isinstance(dispatcher, Dispatcher)
        assert dispatcher.handler is handler
        assert dispatcher.config == ServerConfig()

    @pytest.mark.asyncio
    async def test_dispatcher_uses_its_config(self, make_request, make_response, parse_raw):
        async def handler(request, response):
            raise ValueError("visible in development")

        dispatcher = serve(handler, ServerConfig(development=True))
        response, writer = make_response()
        await dispatcher(make_request(), response)

        raw = parse_raw(writer.buffer)
        assert raw.status == 500
        assert b"ValueError: visible in development" in raw.body

    def test_no_content_repr(self):
        assert repr(NO_CONTENT) == "NO_CONTENT"
