"""Response status codes of the memcached binary protocol."""

from enum import IntEnum


class ResponseStatus(IntEnum):
    NoError = 0x00
    KeyNotFound = 0x01
    KeyExists = 0x02
    ValueTooLarge = 0x03
    InvalidArguments = 0x04
    ItemNotStored = 0x05
    IncrDecrOnNonNumericValue = 0x06
    UnknownCommand = 0x81
    OutOfMemory = 0x82


def status_label(code: int) -> str:
    """Human label for a status code; unknown codes pass through as their number."""
    try:
        return ResponseStatus(code).name
    except ValueError:
        return str(code)
