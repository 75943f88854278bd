"""Tests for Content-Type header parsing."""

import pytest

from microserve.core.content_type import parse_content_type


class TestParseContentType:
    """Tests for parse_content_type."""

    def test_plain_media_type(self):
        result = parse_content_type("application/json")
        assert result.type == "application/json"
        assert result.parameters == {}

    def test_media_type_lowercased(self):
        assert parse_content_type("Text/HTML").type == "text/html"

    def test_charset_parameter(self):
        result = parse_content_type("text/plain; charset=utf-8")
        assert result.type == "text/plain"
        assert result.parameters == {"charset": "utf-8"}

    def test_parameter_names_lowercased(self):
        result = parse_content_type("text/plain; CharSet=latin1")
        assert result.parameters == {"charset": "latin1"}

    def test_quoted_parameter(self):
        result = parse_content_type('multipart/form-data; boundary="a \\"b\\" c"')
        assert result.parameters["boundary"] == 'a "b" c'

    def test_multiple_parameters(self):
        result = parse_content_type("text/html;charset=utf-8; level=1")
        assert result.parameters == {"charset": "utf-8", "level": "1"}

    @pytest.mark.parametrize(
        "header",
        ["", "text", "text/", "text/plain;", "text/plain; charset", "text/plain; =utf-8", "te xt/plain"],
    )
    def test_invalid_headers_raise(self, header):
        with pytest.raises(ValueError):
            parse_content_type(header)
