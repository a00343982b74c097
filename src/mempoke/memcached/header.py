"""
Memcached binary protocol header.

Every packet starts with the same 24 byte header (network byte order):

    magic(1) opcode(1) key_length(2) extra_length(1) data_type(1)
    reserved/status(2) total_body_length(4) opaque(4) cas(8)
"""

import struct
from dataclasses import dataclass

from ..errors import Incomplete, ProtocolMismatch

HEADER_FORMAT = struct.Struct("!BBHBBHIIQ")
HEADER_SIZE = HEADER_FORMAT.size

REQUEST_MAGIC = 0x80
RESPONSE_MAGIC = 0x81

# Offset of the total body length field inside the header
TOTAL_BODY_LENGTH_OFFSET = 8
_TOTAL_BODY_LENGTH = struct.Struct("!I")


@dataclass(frozen=True)
class RequestHeader:
    """Header of a request packet."""

    opcode: int
    key_length: int
    extra_length: int
    value_length: int
    opaque: int = 0
    cas: int = 0
    data_type: int = 0
    vbucket: int = 0

    @property
    def total_body_length(self) -> int:
        return self.key_length + self.extra_length + self.value_length

    def to_bytes(self) -> bytes:
        return HEADER_FORMAT.pack(
            REQUEST_MAGIC,
            self.opcode,
            self.key_length,
            self.extra_length,
            self.data_type,
            self.vbucket,
            self.total_body_length,
            self.opaque,
            self.cas,
        )


@dataclass(frozen=True)
class ResponseHeader:
    """Header of a response packet."""

    magic: int
    opcode: int
    key_length: int
    extra_length: int
    data_type: int
    status: int
    total_body_length: int
    opaque: int
    cas: int

    @property
    def value_length(self) -> int:
        return self.total_body_length - self.key_length - self.extra_length

    @classmethod
    def parse(cls, buffer: bytes | bytearray | memoryview, offset: int = 0) -> "ResponseHeader":
        """Decode the header found at ``offset``. The caller guarantees 24 bytes are there."""
        return cls(*HEADER_FORMAT.unpack_from(buffer, offset))

    @staticmethod
    def check(buffer: bytes | bytearray | memoryview, offset: int = 0) -> int:
        """
        Check the buffer holds a response header at ``offset``.

        Returns:
            Total length of the frame (header plus body) announced by the header

        Raises:
            Incomplete: fewer than 24 bytes are buffered
            ProtocolMismatch: the magic byte is not the response one
        """
        if len(buffer) - offset < HEADER_SIZE:
            raise Incomplete()

        magic = buffer[offset]
        if magic != RESPONSE_MAGIC:
            raise ProtocolMismatch(magic)

        (total_body_length,) = _TOTAL_BODY_LENGTH.unpack_from(
            buffer, offset + TOTAL_BODY_LENGTH_OFFSET
        )
        return HEADER_SIZE + total_body_length
