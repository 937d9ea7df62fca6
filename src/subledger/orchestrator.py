"""
Lookup Orchestrator for the subledger system.

Coordinates the components behind a single ``sub`` lookup:
- Network resolution (local store, then global index and record fetch)
- Cached results from the domain store
- External scanning and merging of fresh results
- Publishing merged results back to the network
- Periodic automatic synchronization with the network
"""

import os
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .audit_logger import AuditLogger, null_logger
from .config import NO_AUTO_SYNC_ENV, SystemConfig
from .domain_store import DomainStore
from .enums import ResolutionSource, SourceBit
from .exceptions import NotFoundError, PublishError, ScanError, UnavailableError
from .gateway_client import GatewayClient
from .manifest import ManifestStore
from .merge import MergeEngine
from .models import TIMESTAMP_FORMAT, LookupResult, SyncResult, utc_timestamp
from .network_resolver import NetworkResolver
from .scanner import SubfinderScanner


class SubdomainOrchestrator:
    """
    Main orchestrator for subdomain lookups.

    Components are built from the configuration unless passed in explicitly.
    """

    def __init__(
        self,
        config: SystemConfig,
        logger: Optional[AuditLogger] = None,
        store: Optional[DomainStore] = None,
        gateway: Optional[GatewayClient] = None,
        resolver: Optional[NetworkResolver] = None,
        scanner: Optional[SubfinderScanner] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: System configuration
            logger: Optional audit logger shared with every component
            store: Optional domain store
            gateway: Optional gateway client
            resolver: Optional network resolver
            scanner: Optional external scanner
            clock: Returns the current UTC time; injectable for tests

        Raises:
            PersistenceError: If the domain store cannot be initialized
        """
        self._config = config
        self._logger = logger or null_logger()
        self._log = self._logger.for_component("Orchestrator")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._store = store or DomainStore(config.storage.base_dir, self._logger)
        self._manifest_store = ManifestStore(config.storage.manifest_path, self._logger)
        self._owns_gateway = gateway is None
        self._gateway = gateway or GatewayClient(
            config.gateways,
            primary=self._manifest_store.load().gateways,
            logger=self._logger,
        )
        self._resolver = resolver or NetworkResolver(
            self._store,
            self._gateway,
            self._manifest_store,
            logger=self._logger,
            peer_id=config.peer_id,
            clock=self._clock,
        )
        self._scanner = scanner or SubfinderScanner(config.scan, self._logger)
        self._merge_engine = MergeEngine(self._store, self._logger, self._clock)

    async def __aenter__(self) -> "SubdomainOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_gateway:
            await self._gateway.close()

    @property
    def store(self) -> DomainStore:
        return self._store

    @property
    def resolver(self) -> NetworkResolver:
        return self._resolver

    @property
    def gateway(self) -> GatewayClient:
        return self._gateway

    async def lookup(
        self,
        domain: str,
        rescan: bool = False,
        use_network: bool = True,
        publish: bool = True,
    ) -> LookupResult:
        """
        Look up the subdomains of a root domain.

        Order: network (unless rescanning), local cache (unless rescanning),
        then a fresh scan merged into the store and optionally published.

        Args:
            domain: Root domain
            rescan: Force a fresh scan even if results are known
            use_network: Consult and publish to the network tier
            publish: Publish merged scan results when something changed

        Returns:
            LookupResult with the final hostname listing

        Raises:
            ScanError: If a scan was required, failed, and nothing is cached
            PersistenceError: If the store cannot be read or written
        """
        start_time = time.perf_counter()
        domain = domain.strip().lower()

        if use_network and not rescan:
            try:
                resolved = await self._resolver.resolve(domain)
            except NotFoundError as e:
                self._log.debug("Network tier has no answer", {"domain": domain, "code": e.code})
            else:
                return LookupResult(
                    domain=domain,
                    hostnames=resolved.hostnames,
                    source=resolved.source,
                    duration_ms=self._elapsed_ms(start_time),
                )

        existing = self._store.list_subdomains(domain)
        if existing and not rescan:
            return LookupResult(
                domain=domain,
                hostnames=existing,
                source=ResolutionSource.LOCAL,
                duration_ms=self._elapsed_ms(start_time),
            )

        result = LookupResult(domain=domain, hostnames=[], source=ResolutionSource.SCAN)
        try:
            found = await self._scanner.scan(domain)
        except ScanError as e:
            if not existing:
                raise
            self._log.error("Rescan failed, returning cached results", error=e, data={"domain": domain})
            result.errors.append(f"scan failed: {e.message}")
            result.source = ResolutionSource.LOCAL
            result.hostnames = existing
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        result.added = self._merge_engine.merge(domain, found, SourceBit.SCAN)

        if use_network and publish and (result.added or not existing):
            records = self._store.load_records(domain)
            if records:
                try:
                    result.published_cid = await self._resolver.publish_domain(domain, records)
                except (UnavailableError, PublishError) as e:
                    self._log.warn(
                        "Failed to publish to network",
                        {"domain": domain, "code": e.code, "error": e.message},
                    )
                    result.errors.append(f"publish failed: {e.message}")

        result.hostnames = self._store.list_subdomains(domain)
        result.duration_ms = self._elapsed_ms(start_time)
        self._log.info(
            "Lookup complete",
            {
                "domain": domain,
                "source": result.source.value,
                "total": len(result.hostnames),
                "added": len(result.added),
                "published_cid": result.published_cid,
            },
        )
        return result

    def auto_sync_enabled(self) -> bool:
        return self._config.sync.auto_sync and not os.environ.get(NO_AUTO_SYNC_ENV)

    def should_auto_sync(self) -> bool:
        """Sync on first run (empty store) or once the configured interval has passed."""
        if not self._store.list_domains():
            return True

        last_sync = self.read_last_sync()
        if last_sync is None:
            return True
        interval = timedelta(hours=self._config.sync.interval_hours)
        return self._clock() - last_sync > interval

    async def auto_sync(self) -> Optional[SyncResult]:
        """
        Synchronize with the network if enabled and due.

        Returns:
            The SyncResult, or None if no sync was due
        """
        if not self.auto_sync_enabled() or not self.should_auto_sync():
            return None

        self._log.info("Auto-syncing with network", {"timeout": self._config.sync.timeout_seconds})
        result = await self._resolver.sync_all(self._config.sync.timeout_seconds)
        self.write_last_sync()
        return result

    def read_last_sync(self) -> Optional[datetime]:
        """Return the last sync time, or None if never synced or unreadable."""
        path = self._config.storage.last_sync_path
        try:
            raw = path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            return datetime.strptime(raw, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            self._log.warn("Ignoring invalid last_sync timestamp", {"value": raw[:64]})
            return None

    def write_last_sync(self) -> None:
        path = self._config.storage.last_sync_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(utc_timestamp(self._clock()), encoding="utf-8")
        except OSError as e:
            self._log.warn("Failed to record sync time", {"path": str(path), "error": str(e)})

    def _elapsed_ms(self, start_time: float) -> float:
        return round((time.perf_counter() - start_time) * 1000, 1)
