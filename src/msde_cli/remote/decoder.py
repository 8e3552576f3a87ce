"""Decoding of raw remote command output.

Output read through the pseudo-terminal carries terminal noise ahead of the
real payload. Values too large for one command come back truncated by the
remote inspector and are re-fetched in bounded slices.
"""

from __future__ import annotations

import re
import string
from typing import TYPE_CHECKING

from ..errors import ProtocolViolation
from ..shared.logging import get_logger

if TYPE_CHECKING:
    from .channel import RemoteChannel

logger = get_logger(__name__)

# Keypad/cursor mode switch the remote shell prints before anything else
TTY_PREAMBLE = b"\x1b[?1h\x1b="

# Suffix the remote inspector appends to a truncated binary
TRUNCATION_MARKER = "<> ..."

# Characters per slice request; ranges are inclusive on both ends
SLICE_WIDTH = 3500

# Runaway-loop guard for slice reassembly
MAX_SLICES = 50

EMPTY_STRING_LITERAL = '""'

_PRINTABLE = frozenset(string.ascii_letters + string.digits + string.punctuation)
_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "e": "\x1b", "0": "\0"}


def decode(raw: bytes) -> str:
    """Strip terminal noise from raw output.

    Args:
        raw: Bytes collected from the remote channel

    Returns:
        The payload text, starting at the first ASCII alphanumeric or
        punctuation character.
    """
    if raw.startswith(TTY_PREAMBLE):
        raw = raw[len(TTY_PREAMBLE) :]
    text = raw.decode("utf-8", errors="replace").strip()
    start = 0
    while start < len(text) and text[start] not in _PRINTABLE:
        start += 1
    return text[start:]


def unescape(text: str) -> str:
    """Undo backslash escapes of an inspected string."""
    return _ESCAPE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text)


def unquote(text: str) -> str:
    """Remove one pair of surrounding double quotes, if present."""
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1]
    return text


def decode_string(raw: bytes) -> str:
    """Decode output that is a single string literal.

    >>> decode_string(b'\\x1b[?1h\\x1b= "hello"')
    'hello'
    """
    return unescape(unquote(decode(raw)))


def is_truncated(text: str) -> bool:
    """Whether a decoded, unescaped value was cut short by the inspector."""
    return text.rstrip().endswith(TRUNCATION_MARKER)


def slice_expr(expr: str, start: int, width: int = SLICE_WIDTH) -> str:
    """Build the expression that fetches one inclusive slice of a value."""
    return f"{expr} |> String.slice({start}..{start + width})"


def _strip_quote_pair(text: str) -> str:
    if text.startswith('"'):
        text = text[1:]
    if text.endswith('"'):
        text = text[:-1]
    return text


async def fetch_chunked(
    channel: RemoteChannel,
    expr: str,
    width: int = SLICE_WIDTH,
    max_slices: int = MAX_SLICES,
) -> str:
    """Reassemble a string value from successive bounded slices.

    Slices overlap by one character because the ranges are inclusive, so the
    first character of every slice after the first is dropped. An empty string
    literal signals the end of the value.

    Args:
        channel: Remote channel to the game server
        expr: Expression that evaluates to the string value
        width: Slice width in characters
        max_slices: Maximum number of slice requests

    Returns:
        The full value.

    Raises:
        ProtocolViolation: The end was not reached within max_slices.
    """
    parts: list[str] = []
    for index in range(max_slices):
        raw = await channel.rpc(slice_expr(expr, index * width, width))
        text = decode(raw)
        if text == EMPTY_STRING_LITERAL:
            logger.debug("reassembled chunked value", slices=index)
            return "".join(parts)
        piece = _strip_quote_pair(unescape(text))
        if index > 0:
            piece = piece[1:]
        parts.append(piece)

    raise ProtocolViolation(
        message=f"Value did not terminate after {max_slices} slices",
        data={"expr": expr, "slices": max_slices},
    )


async def fetch_value(channel: RemoteChannel, expr: str) -> str:
    """Fetch a string value, falling back to slices when it was truncated.

    Args:
        channel: Remote channel to the game server
        expr: Expression that evaluates to the string value

    Returns:
        The full, unescaped value.
    """
    text = unescape(decode(await channel.rpc(expr)))
    if not is_truncated(text):
        return unquote(text)
    logger.info("remote value exceeds one response, fetching in slices", expr=expr)
    return await fetch_chunked(channel, expr)
