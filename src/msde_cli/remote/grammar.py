"""Parser for the two-element result tuples returned by remote calls.

Accepted forms, with optional whitespace between every token::

    {:ok, "<uuid>"}
    {:ok, "<any string>"}
    {:error, <atom>}

The atom's leading colon is optional. Anything else is a ParseError.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from ..errors import ParseError

_UUID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_ATOM = re.compile(r"[A-Za-z_][A-Za-z0-9_@]*[?!]?")


@dataclass(frozen=True)
class Ok:
    """Success tuple."""

    value: uuid.UUID | str


@dataclass(frozen=True)
class Err:
    """Failure tuple carrying the atom name without its colon."""

    atom: str


class _Cursor:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def fail(self, expected: str) -> ParseError:
        found = self.text[self.pos : self.pos + 10] or "end of input"
        return ParseError(
            message=f"Expected {expected} at position {self.pos}, found {found!r}",
            text=self.text,
        )

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def literal(self, token: str) -> None:
        self.skip_ws()
        if not self.text.startswith(token, self.pos):
            raise self.fail(repr(token))
        self.pos += len(token)

    def peek(self, token: str) -> bool:
        self.skip_ws()
        return self.text.startswith(token, self.pos)

    def quoted(self) -> str:
        self.literal('"')
        chars: list[str] = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            self.pos += 1
            if char == '"':
                return "".join(chars)
            chars.append(char)
        raise self.fail("closing quote")

    def atom(self) -> str:
        self.skip_ws()
        if self.text.startswith(":", self.pos):
            self.pos += 1
        match = _ATOM.match(self.text, self.pos)
        if not match:
            raise self.fail("atom")
        self.pos = match.end()
        return match.group()

    def end(self) -> None:
        self.skip_ws()
        if self.pos != len(self.text):
            raise self.fail("end of input")


def parse_tuple(text: str) -> Ok | Err:
    """Parse a result tuple.

    Args:
        text: Decoded remote output

    Returns:
        Ok with a uuid.UUID when the payload is a quoted UUID, otherwise
        with the string; Err with the atom name.

    Raises:
        ParseError: The text is not a recognized tuple.
    """
    cursor = _Cursor(text)
    cursor.literal("{")
    if cursor.peek(":ok"):
        cursor.literal(":ok")
        cursor.literal(",")
        payload = cursor.quoted()
        cursor.literal("}")
        cursor.end()
        if _UUID.fullmatch(payload):
            return Ok(uuid.UUID(payload))
        return Ok(payload)
    if cursor.peek(":error"):
        cursor.literal(":error")
        cursor.literal(",")
        atom = cursor.atom()
        cursor.literal("}")
        cursor.end()
        return Err(atom)
    raise cursor.fail("':ok' or ':error'")
