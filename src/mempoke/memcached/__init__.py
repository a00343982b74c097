"""
Memcached binary protocol support.

Just enough of the protocol to probe a node: ``Get`` and ``Set`` requests,
response framing over a partial read buffer and a client owning a single
connection.
"""

from .client import MemcachedClient
from .command import GET_OPCODE, SET_OPCODE, Command, Get, Set
from .frame import FrameResponse
from .header import (
    HEADER_SIZE,
    REQUEST_MAGIC,
    RESPONSE_MAGIC,
    RequestHeader,
    ResponseHeader,
)
from .status import ResponseStatus, status_label

__all__ = [
    "GET_OPCODE",
    "HEADER_SIZE",
    "REQUEST_MAGIC",
    "RESPONSE_MAGIC",
    "SET_OPCODE",
    "Command",
    "FrameResponse",
    "Get",
    "MemcachedClient",
    "RequestHeader",
    "ResponseHeader",
    "ResponseStatus",
    "Set",
    "status_label",
]
