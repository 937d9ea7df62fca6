"""
Network Resolver for tiered subdomain lookups.

A lookup walks the tiers in order:

1. LocalCheck: a non-empty domain store answers immediately (source=local)
2. IndexLookup: the global index must name a content address for the domain
3. RecordFetch: the domain record blob is fetched and parsed
4. LocalWriteback: its hostnames are stored with the network source bit
   (source=network)

Any failure from step 2 on ends in NotFoundError. Publishing and
synchronization build on the same pieces.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger, null_logger
from .domain_store import DomainStore
from .enums import ResolutionSource, SourceBit
from .exceptions import (
    CorruptDataError,
    GatewayError,
    NotFoundError,
    PersistenceError,
    UnavailableError,
)
from .gateway_client import GatewayClient
from .hostname import normalize_hosts
from .manifest import ManifestStore
from .models import (
    DomainInfo,
    DomainRecord,
    GlobalIndex,
    NetworkStatus,
    ResolveResult,
    SubdomainRecord,
    SyncResult,
    utc_timestamp,
)


class NetworkResolver:
    """
    Resolves, publishes and synchronizes domains against the network tier.

    The global index is the remote index published at the manifest's
    ``index_cid`` (when set), overlaid with the manifest's own ``roots``.
    """

    def __init__(
        self,
        store: DomainStore,
        gateway: GatewayClient,
        manifest_store: ManifestStore,
        logger: Optional[AuditLogger] = None,
        peer_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._manifest_store = manifest_store
        self._log = (logger or null_logger()).for_component("NetworkResolver")
        self._peer_id = peer_id or ""
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve(self, domain: str) -> ResolveResult:
        """
        Resolve the hostnames of a domain through the local and network tiers.

        Args:
            domain: Root domain

        Returns:
            ResolveResult with sorted hostnames and the answering tier

        Raises:
            NotFoundError: If neither the store nor the network knows the domain
        """
        start_time = time.perf_counter()

        local = self._local_subdomains(domain)
        if local:
            self._log.debug("Resolved from local store", {"domain": domain, "count": len(local)})
            return ResolveResult(domain=domain, hostnames=local, source=ResolutionSource.LOCAL)

        index = await self.get_global_index()
        cid = index.cid_for(domain)
        if not cid:
            raise NotFoundError(
                code="not_in_index",
                message=f"Domain {domain} is not in the global index",
                details={"domain": domain},
            )

        hostnames = await self._fetch_hostnames(domain, cid)
        try:
            self._write_back(domain, hostnames)
        except PersistenceError as e:
            self._log.warn("Network writeback failed", {"domain": domain, "error": e.message})

        self._log.info(
            "Resolved from network",
            {
                "domain": domain,
                "cid": cid,
                "count": len(hostnames),
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 1),
            },
        )
        return ResolveResult(
            domain=domain,
            hostnames=hostnames,
            source=ResolutionSource.NETWORK,
            content_hash=cid,
        )

    async def publish_domain(self, domain: str, records: Iterable[SubdomainRecord]) -> str:
        """
        Publish a domain record built from the given records.

        The content address is recorded in the manifest afterwards; failure to
        save the manifest is logged, not raised.

        Returns:
            The content address of the published record

        Raises:
            NodeUnavailableError: If the local node is not reachable
            PublishError: If the node rejected the upload
        """
        record = DomainRecord(
            domain=domain,
            subdomains=sorted(records, key=lambda r: r.sub),
            last_updated=utc_timestamp(self._clock()),
            contributors=[self._peer_id] if self._peer_id else [],
        )
        cid = await self._gateway.publish(record.to_json())

        try:
            manifest = self._manifest_store.load()
            manifest.set_cid(domain, cid)
            self._manifest_store.save(manifest)
        except PersistenceError as e:
            self._log.warn(
                "Published but failed to update local index",
                {"domain": domain, "cid": cid, "error": e.message},
            )

        self._log.info(
            "Domain published",
            {"domain": domain, "cid": cid, "subdomains": len(record.subdomains)},
        )
        return cid

    async def sync_all(self, timeout: float) -> SyncResult:
        """
        Pull every indexed domain that is missing from the local store.

        The whole pass shares one deadline; when it runs out the pass stops
        and reports what was synced so far with ``cancelled`` set.

        Args:
            timeout: Budget for the whole pass, in seconds
        """
        result = SyncResult()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        try:
            index = await asyncio.wait_for(self.get_global_index(), timeout=timeout)
        except asyncio.TimeoutError:
            result.cancelled = True
            self._log.warn("Sync cancelled while loading index", {"timeout": timeout})
            return result

        for domain, cid in sorted(index.domains.items()):
            if self._local_subdomains(domain):
                continue

            remaining = deadline - loop.time()
            if remaining <= 0:
                result.cancelled = True
                break

            result.attempted += 1
            try:
                hostnames = await asyncio.wait_for(
                    self._fetch_hostnames(domain, cid), timeout=remaining
                )
                self._write_back(domain, hostnames)
            except asyncio.TimeoutError:
                result.cancelled = True
                break
            except (NotFoundError, PersistenceError) as e:
                result.errors.append(f"{domain}: {e.message}")
                continue

            result.synced += 1
            result.synced_domains.append(domain)

        self._log.info(
            "Sync finished",
            {
                "synced": result.synced,
                "attempted": result.attempted,
                "cancelled": result.cancelled,
                "errors": len(result.errors),
            },
        )
        return result

    async def get_global_index(self) -> GlobalIndex:
        """Return the remote index overlaid with the manifest roots."""
        index, _ = await self._load_index()
        return index

    async def publish_index(self) -> str:
        """
        Publish the current global index and record its address in the manifest.

        Raises:
            NodeUnavailableError: If the local node is not reachable
            PublishError: If the node rejected the upload
            PersistenceError: If the manifest cannot be saved
        """
        index = await self.get_global_index()
        index.last_updated = utc_timestamp(self._clock())
        if self._peer_id:
            index.peer_id = self._peer_id

        cid = await self._gateway.publish(index.to_json())

        manifest = self._manifest_store.load()
        manifest.index_cid = cid
        self._manifest_store.save(manifest)

        self._log.info("Global index published", {"cid": cid, "domains": len(index.domains)})
        return cid

    async def list_available_domains(self) -> list[DomainInfo]:
        """Describe every domain in the global index; unreachable records keep defaults."""
        index = await self.get_global_index()
        infos = []
        for domain, cid in sorted(index.domains.items()):
            info = DomainInfo(domain=domain, content_hash=cid)
            try:
                record = DomainRecord.from_json(await self._gateway.fetch(cid))
            except (GatewayError, CorruptDataError) as e:
                self._log.debug("Record unavailable", {"domain": domain, "error": e.message})
            else:
                info.subdomain_count = len(record.subdomains)
                info.last_updated = record.last_updated
                info.contributors = record.contributors
            infos.append(info)
        return infos

    async def network_status(self) -> NetworkStatus:
        """Report local node availability, peers and index size."""
        status = NetworkStatus(node_available=await self._gateway.is_available())

        if status.node_available:
            try:
                status.peer_count = len(await self._gateway.get_peers())
            except UnavailableError as e:
                status.peer_error = e.message

        index, index_error = await self._load_index()
        status.index_error = index_error
        status.domains_in_network = len(index.domains)
        status.index_last_updated = index.last_updated or None
        return status

    async def _load_index(self) -> tuple[GlobalIndex, Optional[str]]:
        manifest = self._manifest_store.load()
        index = GlobalIndex(peer_id=self._peer_id)
        error = None

        if manifest.index_cid:
            try:
                index = GlobalIndex.from_json(await self._gateway.fetch(manifest.index_cid))
            except (GatewayError, CorruptDataError) as e:
                error = e.message
                self._log.warn(
                    "Remote index unavailable, using local view",
                    {"cid": manifest.index_cid, "error": e.message},
                )

        for domain, entry in manifest.roots.items():
            if entry.shard_cid:
                index.domains[domain] = entry.shard_cid
        return index, error

    def _local_subdomains(self, domain: str) -> list[str]:
        try:
            return self._store.list_subdomains(domain)
        except PersistenceError as e:
            self._log.warn("Local store unreadable", {"domain": domain, "error": e.message})
            return []

    async def _fetch_hostnames(self, domain: str, cid: str) -> list[str]:
        try:
            record = DomainRecord.from_json(await self._gateway.fetch(cid))
        except (GatewayError, CorruptDataError) as e:
            raise NotFoundError(
                code="record_unavailable",
                message=f"Record for {domain} could not be fetched: {e.message}",
                details={"domain": domain, "cid": cid},
            ) from e

        hostnames = sorted(normalize_hosts(record.hostnames))
        if not hostnames:
            raise NotFoundError(
                code="empty_record",
                message=f"Record for {domain} lists no hostnames",
                details={"domain": domain, "cid": cid},
            )
        return hostnames

    def _write_back(self, domain: str, hostnames: list[str]) -> None:
        now = utc_timestamp(self._clock())
        records = [
            SubdomainRecord(
                sub=host,
                first_seen=now,
                last_seen=now,
                source_mask=int(SourceBit.NETWORK),
            )
            for host in hostnames
        ]
        self._store.write_snapshot(domain, records)
