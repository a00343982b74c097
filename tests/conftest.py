"""
Global pytest configuration and fixtures for MemPoke testing.

Provides a fresh metrics handle per test, a fake memcached server speaking
the binary protocol over real sockets, and a fake Consul catalog served by
aiohttp.
"""

import asyncio
import struct
import time
from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from prometheus_client import CollectorRegistry

from mempoke.discovery import ServiceNode
from mempoke.metrics import ProbeMetrics

HEADER = struct.Struct("!BBHBBHIIQ")
GET_OPCODE = 0x00
SET_OPCODE = 0x01


class FakeMemcached:
    """In-process memcached answering Get and Set with the binary protocol."""

    def __init__(self):
        self.store: dict[bytes, bytes] = {}
        self.requests: list[int] = []
        self.connections = 0
        # Seconds to wait before answering a request
        self.delay = 0.0
        # Write answers one byte at a time
        self.chunked = False
        # Close the connection instead of answering
        self.drop_requests = False
        self.host = "127.0.0.1"
        self.port = 0
        self._server: asyncio.AbstractServer | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()

    def response(self, opcode: int, key: bytes, value: bytes, opaque: int) -> bytes:
        extra = b""
        body = b""
        status = 0
        if opcode == SET_OPCODE:
            self.store[key] = value
        elif key in self.store:
            extra = b"\x00\x00\x00\x00"
            body = self.store[key]
        else:
            status = 1
            body = b"Not found"

        header = HEADER.pack(0x81, opcode, 0, len(extra), 0, status, len(extra) + len(body), opaque, 1)
        return header + extra + body

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            while True:
                header = await reader.readexactly(HEADER.size)
                _, opcode, key_length, extra_length, _, _, body_length, opaque, _ = HEADER.unpack(
                    header
                )
                body = await reader.readexactly(body_length)
                key = body[extra_length : extra_length + key_length]
                value = body[extra_length + key_length :]
                self.requests.append(opcode)

                if self.drop_requests:
                    break
                if self.delay:
                    await asyncio.sleep(self.delay)

                data = self.response(opcode, key, value, opaque)
                if self.chunked:
                    for i in range(len(data)):
                        writer.write(data[i : i + 1])
                        await writer.drain()
                        await asyncio.sleep(0)
                else:
                    writer.write(data)
                    await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()


class FakeConsul:
    """Catalog endpoints of a Consul agent."""

    def __init__(self):
        self.index = 1
        self.services: dict[str, list[str]] = {}
        self.nodes: dict[str, list[dict]] = {}
        self.status = 200
        self.failing_services: set[str] = set()
        self.send_index = True
        self.raw_services_body: str | bytes | None = None
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.host = ""
        self.port = 0
        self.base_url = ""

    def register(self, name: str, tags: list[str], *sockets: tuple[str, int]) -> None:
        self.services[name] = tags
        self.nodes[name] = [
            {"Address": "10.0.0.1", "ServiceAddress": ip, "ServicePort": port}
            for ip, port in sockets
        ]

    def deregister(self, name: str) -> None:
        self.services.pop(name, None)
        self.nodes.pop(name, None)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/v1/catalog/services", self._services)
        app.router.add_get("/v1/catalog/service/{name}", self._service)
        return app

    def _headers(self) -> dict[str, str]:
        return {"X-Consul-Index": str(self.index)} if self.send_index else {}

    async def _services(self, request: web.Request) -> web.Response:
        self.requests.append((request.path, dict(request.query)))
        if self.status != 200:
            return web.Response(status=self.status, text="consul unavailable")
        if isinstance(self.raw_services_body, bytes):
            return web.Response(
                body=self.raw_services_body, content_type="application/json", headers=self._headers()
            )
        if self.raw_services_body is not None:
            return web.Response(text=self.raw_services_body, headers=self._headers())
        return web.json_response(self.services, headers=self._headers())

    async def _service(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        self.requests.append((request.path, dict(request.query)))
        if name in self.failing_services:
            return web.Response(status=500, text="rpc error")
        return web.json_response(self.nodes.get(name, []), headers=self._headers())


@pytest.fixture
def metrics() -> ProbeMetrics:
    """Metrics handle bound to a private registry."""
    return ProbeMetrics(CollectorRegistry())


@pytest_asyncio.fixture
async def fake_memcached() -> AsyncGenerator[FakeMemcached, None]:
    server = FakeMemcached()
    await server.start()
    try:
        yield server
    finally:
        await server.stop()


@pytest_asyncio.fixture
async def fake_consul() -> AsyncGenerator[FakeConsul, None]:
    consul = FakeConsul()
    server = TestServer(consul.create_app())
    await server.start_server()
    consul.host, consul.port = server.host, server.port
    consul.base_url = f"http://{server.host}:{server.port}"
    try:
        yield consul
    finally:
        await server.close()


@pytest.fixture
def memcached_node(fake_memcached: FakeMemcached) -> ServiceNode:
    return ServiceNode(service_name="memcached-main", ip=fake_memcached.host, port=fake_memcached.port)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until() -> Callable:
    """Await until a predicate holds, failing the test after a timeout."""
    return _wait_until
