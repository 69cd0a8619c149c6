"""Tests for tool function name encoding."""

import pytest

from agent_service.errors import ToolRoutingError
from agent_service.tools.naming import (
    MAX_FUNCTION_NAME_LENGTH,
    decode_function_name,
    encode_function_name,
    encode_segment,
    is_truncated,
)

PAIRS = [
    ("filesystem", "read_file"),
    ("google-workspace", "gmail.search"),
    ("pg", "_private_"),
    ("a__b", "c___d"),
    ("srv", "naïve tool"),
    ("x", "-"),
    ("db", "query-v2"),
]


class TestEncoding:
    """Tests for encode_function_name."""

    def test_simple_name(self):
        """Test that plain names keep their shape."""
        assert encode_function_name("filesystem", "read_file") == "mcp__filesystem__read_file"

    def test_special_characters_are_escaped(self):
        """Test escaping of dots and dashes."""
        assert encode_function_name("gw", "gmail.search") == "mcp__gw__gmail-2esearch"
        assert encode_segment("a-b") == "a-2db"

    def test_edge_underscores_are_escaped(self):
        """Test that segments never start/end with '_' or contain '__'."""
        assert encode_segment("_x_") == "-5fx-5f"
        assert encode_segment("a__b") == "a_-5fb"

    @pytest.mark.parametrize("provider,tool", PAIRS)
    def test_output_alphabet(self, provider, tool):
        """Test that encoded names only use API-safe characters."""
        name = encode_function_name(provider, tool)
        assert all(c.isascii() and (c.isalnum() or c in "_-") for c in name)
        assert len(name) <= MAX_FUNCTION_NAME_LENGTH

    def test_empty_segment_rejected(self):
        """Test that empty segments cannot be encoded."""
        with pytest.raises(ValueError):
            encode_function_name("", "tool")


class TestDecoding:
    """Tests for decode_function_name."""

    @pytest.mark.parametrize("provider,tool", PAIRS)
    def test_inverts_encoding(self, provider, tool):
        """Test that decode(encode(p, t)) == (p, t) within the cap."""
        assert not is_truncated(provider, tool)
        assert decode_function_name(encode_function_name(provider, tool)) == (provider, tool)

    def test_missing_prefix(self):
        """Test that names outside the namespace fail fast."""
        with pytest.raises(ToolRoutingError):
            decode_function_name("filesystem__read_file")

    def test_too_few_segments(self):
        """Test that a name without a tool segment is rejected."""
        with pytest.raises(ToolRoutingError):
            decode_function_name("mcp__filesystem")

    def test_too_many_segments(self):
        """Test that an extra separator is rejected."""
        with pytest.raises(ToolRoutingError):
            decode_function_name("mcp__a__b__c")

    def test_bad_escape(self):
        """Test that malformed escapes are rejected."""
        with pytest.raises(ToolRoutingError):
            decode_function_name("mcp__a__b-zz")
        with pytest.raises(ToolRoutingError):
            decode_function_name("mcp__a__b-2")


class TestTruncation:
    """Tests for the length cap."""

    def test_long_names_are_capped(self):
        """Test that long names are truncated to the cap."""
        provider, tool = "provider", "t" * 100
        name = encode_function_name(provider, tool)
        assert len(name) == MAX_FUNCTION_NAME_LENGTH
        assert is_truncated(provider, tool)
