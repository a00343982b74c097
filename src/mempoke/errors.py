"""
Error taxonomy for MemPoke.

Framing errors drive the read loop of the memcached client, connection faults
tear down a node connection, discovery failures reset the Consul cursor and
rate limit errors flag a misconfigured token bucket.
"""


class MemPokeError(Exception):
    """Base class for every error raised by MemPoke."""


class ConfigurationError(MemPokeError):
    """Invalid or incomplete configuration."""


class FrameError(MemPokeError):
    """Base class for response framing errors."""


class Incomplete(FrameError):
    """Not enough bytes buffered yet to frame a complete response."""


class ProtocolMismatch(FrameError):
    """Buffered bytes do not start with the response magic byte."""

    def __init__(self, magic: int):
        super().__init__(f"Unexpected magic byte 0x{magic:02x} in response header")
        self.magic = magic


class ConnectionFault(MemPokeError):
    """The connection to a node is no longer usable."""


class ConnectionReset(ConnectionFault):
    """Peer closed the connection in the middle of a frame."""

    def __init__(self, buffered: int):
        super().__init__(f"Connection reset by peer with {buffered} bytes pending")
        self.buffered = buffered


class EmptyOrIncompleteResponse(ConnectionFault):
    """Peer closed the connection while a response was expected."""

    def __init__(self):
        super().__init__("Connection closed before any response was received")


class CommandTimeout(MemPokeError):
    """A single command exceeded its deadline."""

    def __init__(self, command: str, timeout_seconds: float):
        super().__init__(f"{command} command timed out after {timeout_seconds}s")
        self.command = command
        self.timeout_seconds = timeout_seconds


class DiscoveryQueryFailed(MemPokeError):
    """Consul could not be queried or answered with a non-success status."""

    def __init__(self, url: str, status: int | None = None, reason: str | None = None):
        message = f"Issue query: {url}"
        if status is not None:
            message += f" - status code: {status}"
        if reason:
            message += f" - {reason}"
        super().__init__(message)
        self.url = url
        self.status = status
        self.reason = reason


class RateLimitExceeded(MemPokeError):
    """Requested more tokens than the bucket can ever hold."""

    def __init__(self, requested: int, capacity: int):
        super().__init__(
            f"Number of requested token ({requested}) is greater than the capacity "
            f"({capacity}) of the token bucket"
        )
        self.requested = requested
        self.capacity = capacity
