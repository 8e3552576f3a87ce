"""Unit tests for the result tuple parser."""

from __future__ import annotations

import uuid

import pytest

from msde_cli.errors import ParseError, ProtocolViolation
from msde_cli.remote import Err, Ok, parse_tuple


class TestParseTuple:
    """Tests for parse_tuple."""

    def test_ok_string(self):
        """A quoted string payload is returned as str."""
        assert parse_tuple('{:ok, "abc"}') == Ok("abc")

    def test_ok_uuid(self):
        """A quoted UUID payload is returned as a UUID."""
        result = parse_tuple('{:ok,"11111111-1111-1111-1111-111111111111"}')
        assert result == Ok(uuid.UUID("11111111-1111-1111-1111-111111111111"))
        assert isinstance(result.value, uuid.UUID)

    def test_error_atom(self):
        """An error atom is returned without decoration."""
        assert parse_tuple("{:error, not_found}") == Err("not_found")

    def test_error_atom_with_colon(self):
        """The atom's colon is optional."""
        assert parse_tuple("{:error, :game_running}") == Err("game_running")

    def test_surrounding_whitespace(self):
        """Whitespace around every token is tolerated."""
        assert parse_tuple('  {  :ok ,\n "a b" }\r\n') == Ok("a b")

    def test_escaped_quote_in_string(self):
        """Escaped quotes stay inside the payload."""
        assert parse_tuple(r'{:ok, "say \"hi\""}') == Ok('say "hi"')

    @pytest.mark.parametrize(
        "text",
        [
            "{:ok}",
            "{:ok, abc}",
            '{:ok, "abc"',
            '{:ok, "abc"} trailing',
            "{:maybe, x}",
            ":ok",
            "",
        ],
    )
    def test_malformed(self, text):
        """Anything outside the grammar is a parse error."""
        with pytest.raises(ParseError) as exc_info:
            parse_tuple(text)
        assert exc_info.value.text == text
        assert isinstance(exc_info.value, ProtocolViolation)
