"""
Request commands used to probe a memcached node.

Only ``Get`` and ``Set`` are implemented, which is what a liveness probe
needs: write a key, then read it back.
"""

import struct
from abc import ABC, abstractmethod

from .header import RequestHeader

GET_OPCODE = 0x00
SET_OPCODE = 0x01

SET_EXTRA_LENGTH = 8
_SET_EXTRA = struct.Struct("!Q")


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


class Command(ABC):
    """A request that can be written on the wire."""

    name: str = "command"

    def __init__(self, opaque: int = 0):
        self.opaque = opaque

    @property
    @abstractmethod
    def header(self) -> RequestHeader:
        """Header announcing the body of this command."""

    @abstractmethod
    def body(self) -> bytes:
        """Extras, key and value in wire order."""

    def to_bytes(self) -> bytes:
        return self.header.to_bytes() + self.body()


class Get(Command):
    """Get the value stored under ``key``."""

    name = "get"

    def __init__(self, key: str | bytes, opaque: int = 0):
        super().__init__(opaque)
        self.key = _as_bytes(key)

    @property
    def header(self) -> RequestHeader:
        return RequestHeader(
            opcode=GET_OPCODE,
            key_length=len(self.key),
            extra_length=0,
            value_length=0,
            opaque=self.opaque,
        )

    def body(self) -> bytes:
        return self.key


class Set(Command):
    """Store ``value`` under ``key`` for ``ttl`` seconds."""

    name = "set"

    def __init__(self, key: str | bytes, value: str | bytes, ttl: int, opaque: int = 0):
        super().__init__(opaque)
        self.key = _as_bytes(key)
        self.value = _as_bytes(value)
        self.ttl = ttl
        # 8 bytes of extras: the ttl as a big-endian unsigned 64-bit integer
        self.extra = _SET_EXTRA.pack(ttl)

    @property
    def header(self) -> RequestHeader:
        return RequestHeader(
            opcode=SET_OPCODE,
            key_length=len(self.key),
            extra_length=SET_EXTRA_LENGTH,
            value_length=len(self.value),
            opaque=self.opaque,
        )

    def body(self) -> bytes:
        return self.extra + self.key + self.value
