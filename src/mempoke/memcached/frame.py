"""
Response framing over a partially filled read buffer.

Framing is split in two steps. ``check`` only measures: it tells whether a
complete frame is buffered and how long it is, without allocating anything.
``parse`` decodes a frame already proven complete. The read offset is an
explicit argument, so neither step moves any cursor.
"""

from dataclasses import dataclass

from .header import HEADER_SIZE, ResponseHeader
from .status import status_label
from ..errors import Incomplete


@dataclass(frozen=True)
class FrameResponse:
    """A complete response frame."""

    header: ResponseHeader
    extra: bytes
    key: bytes
    value: bytes

    @property
    def status(self) -> str:
        return status_label(self.header.status)

    @property
    def length(self) -> int:
        return HEADER_SIZE + self.header.total_body_length

    @staticmethod
    def check(buffer: bytes | bytearray | memoryview, offset: int = 0) -> int:
        """
        Check a complete frame is buffered at ``offset``.

        Returns:
            Length in bytes of the frame

        Raises:
            Incomplete: more bytes are needed
            ProtocolMismatch: buffered bytes are not a response
        """
        total_len = ResponseHeader.check(buffer, offset)
        if len(buffer) - offset < total_len:
            raise Incomplete()
        return total_len

    @classmethod
    def parse(cls, buffer: bytes | bytearray | memoryview, offset: int = 0) -> "FrameResponse":
        """Decode the frame at ``offset``; ``check`` must have succeeded first."""
        header = ResponseHeader.parse(buffer, offset)
        start = offset + HEADER_SIZE
        key_start = start + header.extra_length
        value_start = key_start + header.key_length
        value_end = start + header.total_body_length
        return cls(
            header=header,
            extra=bytes(buffer[start:key_start]),
            key=bytes(buffer[key_start:value_start]),
            value=bytes(buffer[value_start:value_end]),
        )
