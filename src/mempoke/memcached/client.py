"""
Memcached client holding one connection to a single node.

The client writes requests built by ``command`` and reads responses by
feeding a growable buffer from the socket until ``FrameResponse.check``
reports a complete frame.
"""

import asyncio
import itertools
import logging
import time

from .command import Command, Get, Set
from .frame import FrameResponse
from ..errors import (
    CommandTimeout,
    ConnectionReset,
    EmptyOrIncompleteResponse,
    Incomplete,
)
from ..metrics import ProbeMetrics

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4 * 1024
TIMEOUT_STATUS = "Timeout"


class MemcachedClient:
    """Connection to a memcached node speaking the binary protocol."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        port: int,
    ):
        self.host = host
        self.port = port
        self._reader = reader
        self._writer = writer
        self._buffer = bytearray()
        self._opaque = itertools.count(1)

    @property
    def socket(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    async def connect(cls, host: str, port: int, timeout: float = 5.0) -> "MemcachedClient":
        """Open a TCP connection to ``host:port``."""
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        logger.debug("Connected to memcached %s:%s", host, port)
        return cls(reader, writer, host, port)

    def next_opaque(self) -> int:
        return next(self._opaque) & 0xFFFFFFFF

    async def send_request(self, command: Command) -> None:
        self._writer.write(command.to_bytes())
        await self._writer.drain()

    def _parse_frame(self) -> FrameResponse | None:
        try:
            length = FrameResponse.check(self._buffer)
        except Incomplete:
            return None

        response = FrameResponse.parse(self._buffer)
        del self._buffer[:length]
        return response

    async def read_response(self) -> FrameResponse:
        """
        Read one complete response frame.

        Raises:
            ProtocolMismatch: buffered bytes are not a response
            ConnectionReset: peer closed the socket in the middle of a frame
            EmptyOrIncompleteResponse: peer closed the socket before answering
        """
        while True:
            response = self._parse_frame()
            if response is not None:
                return response

            chunk = await self._reader.read(READ_CHUNK_SIZE)
            if not chunk:
                if self._buffer:
                    raise ConnectionReset(len(self._buffer))
                raise EmptyOrIncompleteResponse()
            self._buffer.extend(chunk)

    async def execute(self, command: Command) -> FrameResponse:
        """Send ``command`` and return its response, skipping stale responses."""
        await self.send_request(command)
        while True:
            response = await self.read_response()
            if response.header.opaque == command.opaque:
                return response
            logger.debug(
                "Discard stale response (opaque %s) from %s while waiting for %s",
                response.header.opaque,
                self.socket,
                command.opaque,
            )

    async def _timed(
        self,
        command: Command,
        cluster_name: str,
        metrics: ProbeMetrics,
        timeout: float,
    ) -> FrameResponse | None:
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(self.execute(command), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s", CommandTimeout(command.name, timeout), extra={"socket": self.socket}
            )
            metrics.observe_request(
                cluster_name, self.socket, command.name, TIMEOUT_STATUS, timeout
            )
            return None

        metrics.observe_request(
            cluster_name,
            self.socket,
            command.name,
            response.status,
            time.perf_counter() - start,
        )
        return response

    async def probe(
        self,
        cluster_name: str,
        metrics: ProbeMetrics,
        key: str = "mempoke",
        value: bytes = b"mempoke",
        ttl: int = 60,
        timeout: float = 1.0,
    ) -> None:
        """
        Set then get ``key``, recording latency and status of both commands.

        A timed out command is recorded with the timeout as its latency and is
        not raised; connection errors propagate.
        """
        await self._timed(
            Set(key, value, ttl, opaque=self.next_opaque()), cluster_name, metrics, timeout
        )
        await self._timed(Get(key, opaque=self.next_opaque()), cluster_name, metrics, timeout)

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error while closing connection to %s: %s", self.socket, e)
