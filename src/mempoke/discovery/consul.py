"""
Consul catalog client.

Turns Consul blocking queries into snapshots of the nodes of every service
carrying a given tag. The ``X-Consul-Index`` returned with each answer is fed
back as the ``index`` of the next query, so that Consul holds the request
until the catalog changes or ``wait`` elapses.
"""

import asyncio
import json
import logging
import re
from typing import Any
from urllib.parse import quote

import aiohttp

from .core import ServiceNode, ServiceNodes
from ..errors import DiscoveryQueryFailed

logger = logging.getLogger(__name__)

CONSUL_INDEX_HEADER = "X-Consul-Index"
CONSUL_TOKEN_HEADER = "X-Consul-Token"
DEFAULT_WAIT = "10m"

MIN_PORT = 1
MAX_PORT = 65535

_WAIT_PATTERN = re.compile(r"^(\d+)(ms|s|m|h)?$")
_WAIT_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_wait(wait: str) -> float:
    """Convert a Consul duration such as ``10m`` or ``30s`` into seconds."""
    match = _WAIT_PATTERN.match(wait.strip())
    if not match:
        raise ValueError(f"Invalid wait duration: {wait!r}")
    amount, unit = match.groups()
    return int(amount) * _WAIT_UNITS[unit]


class ConsulClient:
    """Read-only client of the Consul catalog HTTP API."""

    def __init__(
        self,
        base_url: str,
        wait: str = DEFAULT_WAIT,
        token: str | None = None,
        request_timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Args:
            base_url: Consul agent URL, e.g. ``http://localhost:8500``
            wait: Max duration Consul holds a blocking query
            token: Optional ACL token
            request_timeout: Extra time granted on top of ``wait`` before giving up
            session: Session to use instead of creating one
        """
        self.base_url = base_url.rstrip("/")
        self.wait = wait
        self.token = token
        # Consul adds up to wait/16 of jitter to blocking queries
        wait_seconds = parse_wait(wait)
        self._timeout = aiohttp.ClientTimeout(
            total=wait_seconds + wait_seconds / 16 + request_timeout
        )
        self._session = session
        self._owns_session = session is None
        logger.debug("Create consul client %s", self.base_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {CONSUL_TOKEN_HEADER: self.token} if self.token else None
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "ConsulClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @staticmethod
    def check_index(prev_index: int, index: int) -> int:
        """Reset the index to 0 when it goes backward or below zero."""
        if index < prev_index:
            logger.warning(
                "Consul index querying list of services is lower than previous one "
                "(%s < %s). Will need to reset it to 0",
                index,
                prev_index,
            )
            return 0

        if index < 0:
            logger.warning("Consul index < 0 (%s). Will need to reset it to 0", index)
            return 0

        return index

    @staticmethod
    def is_matching_service(tag: str, tags: Any) -> bool:
        if not isinstance(tags, list):
            return False
        return any(isinstance(value, str) and value == tag for value in tags)

    @staticmethod
    def extract_matching_services(tag: str, body_json: Any) -> list[str]:
        """Names of the services whose tag list contains ``tag``."""
        if not isinstance(body_json, dict):
            logger.warning("Empty list of services on the consul catalog")
            return []

        matching_services = [
            name
            for name, tags in body_json.items()
            if ConsulClient.is_matching_service(tag, tags)
        ]
        logger.debug("Services matching tag %s: %s", tag, ", ".join(matching_services))
        return matching_services

    @staticmethod
    def extract_nodes(service_name: str, body_json: Any) -> list[ServiceNode]:
        """Build the nodes of ``service_name`` from a catalog service answer."""
        if not isinstance(body_json, list):
            logger.warning("Returned body is not an array of nodes: %s", body_json)
            return []

        nodes = []
        for entry in body_json:
            if not isinstance(entry, dict):
                logger.warning("Skip invalid node entry for %s: %s", service_name, entry)
                continue

            # An empty ServiceAddress means the service listens on the node address
            address = entry.get("ServiceAddress") or entry.get("Address")
            port = entry.get("ServicePort")
            if not isinstance(address, str) or not address:
                logger.warning("Skip node of %s without address: %s", service_name, entry)
                continue
            if isinstance(port, bool) or not isinstance(port, int):
                logger.warning("Skip node of %s without port: %s", service_name, entry)
                continue
            if not MIN_PORT <= port <= MAX_PORT:
                logger.warning("Skip node of %s with invalid port %s: %s", service_name, port, entry)
                continue

            nodes.append(ServiceNode(service_name=service_name, ip=address, port=port))
        return nodes

    async def _http_call(self, path: str, prev_index: int) -> tuple[int, Any]:
        url = f"{self.base_url}{path}"
        query_url = f"{url}?index={prev_index}&wait={self.wait}"
        logger.debug("Query consul: %s", query_url)

        session = await self._get_session()
        try:
            async with session.get(
                url, params={"index": str(prev_index), "wait": self.wait}
            ) as resp:
                if not 200 <= resp.status < 300:
                    logger.error("Failed to query consul, http status code %s", resp.status)
                    raise DiscoveryQueryFailed(query_url, status=resp.status)

                raw_index = resp.headers.get(CONSUL_INDEX_HEADER)
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DiscoveryQueryFailed(query_url, reason=str(e) or type(e).__name__) from e

        if raw_index is None:
            logger.warning("Missing %s header. Setting index to 0", CONSUL_INDEX_HEADER)
            index = 0
        else:
            try:
                index = self.check_index(prev_index, int(raw_index))
            except ValueError as e:
                raise DiscoveryQueryFailed(
                    query_url, reason=f"invalid {CONSUL_INDEX_HEADER} header {raw_index!r}"
                ) from e

        try:
            body_json = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("Http response body is not json parsable: %r", body[:256])
            body_json = None

        return index, body_json

    async def list_nodes_for_service(self, service_name: str) -> list[ServiceNode]:
        _, body_json = await self._http_call(
            f"/v1/catalog/service/{quote(service_name, safe='')}", 0
        )
        return self.extract_nodes(service_name, body_json)

    async def list_matching_nodes(self, prev_index: int, tag: str) -> ServiceNodes:
        """
        Block until the catalog changes after ``prev_index`` and list the nodes
        of every service tagged with ``tag``.

        Raises:
            DiscoveryQueryFailed: the catalog or any of the matching services
                could not be queried
        """
        index, body_json = await self._http_call("/v1/catalog/services", prev_index)

        snapshot = ServiceNodes(index=index)
        for service_name in self.extract_matching_services(tag, body_json):
            for node in await self.list_nodes_for_service(service_name):
                snapshot.add(node)

        logger.debug("Found %d nodes for tag %s at index %s", len(snapshot), tag, index)
        return snapshot
