"""
Gateway Failover Client for the content-addressed network.

Fetches opaque blobs by content id from a tiered, ordered list of HTTP
endpoints and returns on the first success:

1. Local node candidates (short shared budget)
2. Primary public gateways (from the manifest)
3. Community/decentralized gateways
4. Backup gateways

Publishing goes to the local node's add/pin API only. Endpoints are tried
strictly in order, never raced.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from .audit_logger import AuditLogger, null_logger
from .config import DEFAULT_PRIMARY_GATEWAYS, GatewayConfig
from .enums import GatewayErrorCode, GatewayTier
from .exceptions import (
    GatewayError,
    NodeUnavailableError,
    PublishError,
    UnavailableError,
)
from .models import is_valid_cid, utc_timestamp


# Failures of a single request; InvalidURL and StreamError are not HTTPError subclasses.
REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError)


@dataclass
class EndpointStats:
    """Informational health counters for one endpoint."""

    success_count: int = 0
    failure_count: int = 0
    last_success: Optional[str] = None
    last_latency_ms: float = 0.0

    @property
    def score(self) -> int:
        return self.success_count - self.failure_count


class GatewayClient:
    """
    Tiered fetch/publish client with per-endpoint health tracking.

    The client can be used as an async context manager; an injected
    httpx.AsyncClient is left open on exit.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        primary: Optional[list[str]] = None,
        logger: Optional[AuditLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the gateway client.

        Args:
            config: Tier lists, timeouts and body cap
            primary: Primary gateway base URLs (usually the manifest's list)
            logger: Optional audit logger
            client: Optional pre-built HTTP client (used by tests)
        """
        self._config = config or GatewayConfig()
        self._primary = list(primary) if primary else list(DEFAULT_PRIMARY_GATEWAYS)
        self._log = (logger or null_logger()).for_component("GatewayClient")
        self._client = client
        self._owns_client = client is None
        self._stats: dict[str, EndpointStats] = {}

    async def __aenter__(self) -> "GatewayClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def stats(self) -> dict[str, EndpointStats]:
        """Per-endpoint health counters keyed by endpoint base URL."""
        return dict(self._stats)

    def tiers(self) -> list[tuple[GatewayTier, list[str]]]:
        """Return the remote tiers in trial order, reordered by health if enabled."""
        tiers = [
            (GatewayTier.PRIMARY, list(self._primary)),
            (GatewayTier.DECENTRALIZED, list(self._config.decentralized)),
            (GatewayTier.BACKUP, list(self._config.backup)),
        ]
        if self._config.promote_healthy:
            # sorted() is stable, so equal scores keep their configured order
            tiers = [
                (tier, sorted(endpoints, key=lambda e: -self._stats_for(e).score))
                for tier, endpoints in tiers
            ]
        return tiers

    async def fetch(self, cid: str) -> bytes:
        """
        Fetch a blob by content id, local node first, then each remote tier.

        Args:
            cid: Content address to fetch

        Returns:
            The blob bytes from the first endpoint that served it

        Raises:
            GatewayError: If every endpoint failed; the last underlying
                error is chained as __cause__
        """
        self._ensure_client()
        tried = 0
        last_error: Optional[Exception] = None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.local_timeout_seconds
        for template in self._config.local_fetch_candidates:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            url = template.format(cid=cid)
            tried += 1
            try:
                data = await self._get_bounded(template, url, remaining)
            except GatewayError as e:
                last_error = e
                continue
            self._log.debug(
                "Fetched from local node",
                {"cid": cid, "endpoint": template, "bytes": len(data)},
            )
            return data

        for tier, endpoints in self.tiers():
            for gateway in endpoints:
                url = f"{gateway}{cid}"
                tried += 1
                try:
                    data = await self._get_bounded(
                        gateway, url, self._config.gateway_timeout_seconds
                    )
                except GatewayError as e:
                    last_error = e
                    self._log.debug(
                        "Gateway failed",
                        {"cid": cid, "tier": tier.value, "gateway": gateway, "code": e.code},
                    )
                    continue
                self._log.debug(
                    "Fetched from gateway",
                    {"cid": cid, "tier": tier.value, "gateway": gateway, "bytes": len(data)},
                )
                return data

        self._log.warn(
            "All gateways failed",
            {"cid": cid, "endpoints_tried": tried, "last_error": str(last_error)},
        )
        raise GatewayError(
            code="all_endpoints_failed",
            message=f"Failed to fetch {cid} from all {tried} endpoints",
            details={"cid": cid, "endpoints_tried": tried},
        ) from last_error

    async def publish(self, data: bytes) -> str:
        """
        Add and pin a blob on the local node.

        Args:
            data: Bytes to publish

        Returns:
            The content id assigned by the node

        Raises:
            NodeUnavailableError: If the local node does not answer
            PublishError: If the node rejected the upload or returned garbage
        """
        if not await self.is_available():
            raise NodeUnavailableError(
                code=GatewayErrorCode.NODE_UNAVAILABLE.value,
                message="Local content node is not available",
                details={"api": self._config.local_api},
            )

        url = f"{self._config.local_api.rstrip('/')}/api/v0/add?pin=true"
        try:
            response = await asyncio.wait_for(
                self._client.post(
                    url,
                    files={"file": ("blob", data, "application/octet-stream")},
                    timeout=self._config.gateway_timeout_seconds,
                ),
                timeout=self._config.gateway_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PublishError(
                code=GatewayErrorCode.TIMEOUT.value,
                message="Publish to local node timed out",
                details={"url": url},
            ) from e
        except REQUEST_ERRORS as e:
            raise PublishError(
                code=GatewayErrorCode.NETWORK_ERROR.value,
                message=f"Publish to local node failed: {e}",
                details={"url": url},
            ) from e

        if response.status_code != 200:
            raise PublishError(
                code=GatewayErrorCode.HTTP_ERROR.value,
                message=f"Local node returned HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )

        cid = self._parse_add_response(response.text)
        self._log.info("Published blob", {"cid": cid, "bytes": len(data)})
        return cid

    async def is_available(self) -> bool:
        """Check whether the local node API answers within the local timeout."""
        self._ensure_client()
        url = f"{self._config.local_api.rstrip('/')}/api/v0/version"
        timeout = self._config.local_timeout_seconds
        try:
            response = await asyncio.wait_for(
                self._client.post(url, timeout=timeout), timeout=timeout
            )
        except (asyncio.TimeoutError, *REQUEST_ERRORS):
            return False
        return response.status_code == 200

    async def get_peers(self) -> list[str]:
        """
        List the peer ids the local node is connected to.

        Raises:
            UnavailableError: If the node cannot be queried
        """
        self._ensure_client()
        url = f"{self._config.local_api.rstrip('/')}/api/v0/swarm/peers"
        timeout = self._config.local_timeout_seconds
        try:
            response = await asyncio.wait_for(
                self._client.post(url, timeout=timeout), timeout=timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (asyncio.TimeoutError, ValueError, *REQUEST_ERRORS) as e:
            raise UnavailableError(
                code=GatewayErrorCode.NODE_UNAVAILABLE.value,
                message=f"Failed to query peers: {e}",
                details={"url": url},
            ) from e

        peers = payload.get("Peers") if isinstance(payload, dict) else None
        return [
            peer["Peer"]
            for peer in peers or []
            if isinstance(peer, dict) and isinstance(peer.get("Peer"), str)
        ]

    def _ensure_client(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._config.gateway_timeout_seconds),
                follow_redirects=True,
                headers={
                    "User-Agent": self._config.user_agent,
                    "Accept": "application/octet-stream, */*",
                },
            )
            self._owns_client = True

    def _stats_for(self, endpoint: str) -> EndpointStats:
        stats = self._stats.get(endpoint)
        if stats is None:
            stats = self._stats[endpoint] = EndpointStats()
        return stats

    async def _get_bounded(self, endpoint: str, url: str, timeout: float) -> bytes:
        """Read one URL with a deadline and body cap, recording endpoint health."""
        stats = self._stats_for(endpoint)
        start_time = time.perf_counter()
        try:
            data = await asyncio.wait_for(self._read_capped(url, timeout), timeout=timeout)
        except asyncio.TimeoutError as e:
            stats.failure_count += 1
            raise GatewayError(
                code=GatewayErrorCode.TIMEOUT.value,
                message=f"Timed out after {timeout:.1f}s",
                details={"url": url},
            ) from e
        except httpx.TimeoutException as e:
            stats.failure_count += 1
            raise GatewayError(
                code=GatewayErrorCode.TIMEOUT.value,
                message=f"Timed out: {e}",
                details={"url": url},
            ) from e
        except REQUEST_ERRORS as e:
            stats.failure_count += 1
            raise GatewayError(
                code=GatewayErrorCode.NETWORK_ERROR.value,
                message=f"Request failed: {e}",
                details={"url": url},
            ) from e
        except GatewayError:
            stats.failure_count += 1
            raise

        stats.success_count += 1
        stats.last_success = utc_timestamp()
        stats.last_latency_ms = (time.perf_counter() - start_time) * 1000
        return data

    async def _read_capped(self, url: str, timeout: float) -> bytes:
        # Local API endpoints only accept POST; gateways serve GET.
        method = "POST" if "/api/v0/" in url else "GET"
        limit = self._config.max_body_bytes

        async with self._client.stream(method, url, timeout=timeout) as response:
            if response.status_code != 200:
                raise GatewayError(
                    code=GatewayErrorCode.HTTP_ERROR.value,
                    message=f"HTTP {response.status_code} from {url}",
                    details={"url": url, "status_code": response.status_code},
                )

            declared = response.headers.get("Content-Length")
            if declared is not None and declared.isdigit() and int(declared) > limit:
                raise self._size_error(url, limit)

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > limit:
                    raise self._size_error(url, limit)
            return bytes(body)

    @staticmethod
    def _size_error(url: str, limit: int) -> GatewayError:
        return GatewayError(
            code=GatewayErrorCode.SIZE_LIMIT.value,
            message=f"Response from {url} exceeds {limit} bytes",
            details={"url": url, "limit": limit},
        )

    @staticmethod
    def _parse_add_response(text: str) -> str:
        # The add endpoint streams one JSON object per line; the last one names the root.
        lines = [line for line in text.splitlines() if line.strip()]
        try:
            payload = json.loads(lines[-1]) if lines else None
        except ValueError as e:
            raise PublishError(
                code=GatewayErrorCode.PARSE_ERROR.value,
                message=f"Failed to decode add response: {e}",
            ) from e

        cid = payload.get("Hash") if isinstance(payload, dict) else None
        if not is_valid_cid(cid):
            raise PublishError(
                code=GatewayErrorCode.PARSE_ERROR.value,
                message="Add response carries no valid content id",
                details={"response": text[:200]},
            )
        return cid
