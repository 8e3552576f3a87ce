"""Remote side of msde-cli: runtime client, exec channel and result decoding."""

from .channel import MSDE_BINARY, REMOTE_ERRORS, RemoteChannel, rpc_command
from .decoder import (
    MAX_SLICES,
    SLICE_WIDTH,
    decode,
    decode_string,
    fetch_chunked,
    fetch_value,
    is_truncated,
    unescape,
    unquote,
)
from .grammar import Err, Ok, parse_tuple
from .runtime import DockerAPIError, DockerClient, StreamKind

__all__ = [
    # Runtime
    "DockerClient",
    "DockerAPIError",
    "StreamKind",
    # Channel
    "RemoteChannel",
    "MSDE_BINARY",
    "REMOTE_ERRORS",
    "rpc_command",
    # Decoder
    "SLICE_WIDTH",
    "MAX_SLICES",
    "decode",
    "decode_string",
    "unescape",
    "unquote",
    "is_truncated",
    "fetch_chunked",
    "fetch_value",
    # Grammar
    "Ok",
    "Err",
    "parse_tuple",
]
