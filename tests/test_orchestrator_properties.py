"""
Tests for the Lookup Orchestrator.

The scanner and the content network are replaced with in-memory fakes; the
domain store, manifest, merge engine and resolver are the real ones.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from subledger.config import StorageConfig, SyncConfig, SystemConfig
from subledger.domain_store import DomainStore
from subledger.enums import ResolutionSource, SourceBit
from subledger.exceptions import (
    GatewayError,
    NodeUnavailableError,
    ScanExecutionError,
    ToolNotFoundError,
)
from subledger.manifest import Manifest, ManifestStore
from subledger.models import DomainRecord, utc_timestamp
from subledger.network_resolver import NetworkResolver
from subledger.orchestrator import SubdomainOrchestrator


NOW = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


class FakeGateway:
    """In-memory content network."""

    def __init__(self, available: bool = True) -> None:
        self.blobs: dict[str, bytes] = {}
        self.available = available
        self.published: list[bytes] = []

    async def fetch(self, cid: str) -> bytes:
        if cid not in self.blobs:
            raise GatewayError(code="all_endpoints_failed", message=f"Failed to fetch {cid}")
        return self.blobs[cid]

    async def publish(self, data: bytes) -> str:
        if not self.available:
            raise NodeUnavailableError(code="node_unavailable", message="Local node down")
        cid = f"QmPub{len(self.published)}"
        self.published.append(data)
        self.blobs[cid] = data
        return cid

    async def is_available(self) -> bool:
        return self.available

    async def get_peers(self) -> list[str]:
        return []


class FakeScanner:
    """Returns canned hostnames or raises a canned error."""

    def __init__(self, hosts: Optional[set[str]] = None, error: Optional[Exception] = None) -> None:
        self.hosts = hosts or set()
        self.error = error
        self.calls: list[str] = []

    async def scan(self, domain: str) -> set[str]:
        self.calls.append(domain)
        if self.error is not None:
            raise self.error
        return set(self.hosts)


def make_orchestrator(
    base: Path,
    scanner: FakeScanner,
    gateway: Optional[FakeGateway] = None,
    manifest: Optional[Manifest] = None,
    sync: Optional[SyncConfig] = None,
    now: datetime = NOW,
) -> SubdomainOrchestrator:
    config = SystemConfig(storage=StorageConfig(base_dir=base), sync=sync or SyncConfig())
    gateway = gateway or FakeGateway()
    manifest_store = ManifestStore(config.storage.manifest_path)
    if manifest is not None:
        manifest_store.save(manifest)
    store = DomainStore(base)
    resolver = NetworkResolver(
        store, gateway, manifest_store, peer_id="peer-self", clock=lambda: now
    )
    return SubdomainOrchestrator(
        config,
        store=store,
        gateway=gateway,
        resolver=resolver,
        scanner=scanner,
        clock=lambda: now,
    )


def record_blob(domain: str, hosts: list[str]) -> bytes:
    return json.dumps({
        "domain": domain,
        "subdomains": hosts,
        "last_updated": "2024-01-01T00:00:00Z",
        "contributors": ["peer-a"],
        "content_hash": "",
        "version": 1,
    }).encode("utf-8")


class TestLookupOrder:
    """Network first, then cache, then scan."""

    def test_network_answer_skips_scanner(self, tmp_path: Path) -> None:
        gateway = FakeGateway()
        gateway.blobs["QmRec"] = record_blob("example.com", ["www.example.com", "api.example.com"])
        manifest = Manifest()
        manifest.set_cid("example.com", "QmRec")
        scanner = FakeScanner({"other.example.com"})
        orchestrator = make_orchestrator(tmp_path, scanner, gateway, manifest)

        result = asyncio.run(orchestrator.lookup("Example.COM"))

        assert result.source == ResolutionSource.NETWORK
        assert result.hostnames == ["api.example.com", "www.example.com"]
        assert scanner.calls == []

    def test_cache_answers_without_network(self, tmp_path: Path) -> None:
        scanner = FakeScanner({"a.example.com", "b.example.com"})
        orchestrator = make_orchestrator(tmp_path, scanner)

        asyncio.run(orchestrator.lookup("example.com", use_network=False))
        second = asyncio.run(orchestrator.lookup("example.com", use_network=False))

        assert second.source == ResolutionSource.LOCAL
        assert second.hostnames == ["a.example.com", "b.example.com"]
        assert scanner.calls == ["example.com"]

    def test_scan_merges_and_publishes(self, tmp_path: Path) -> None:
        gateway = FakeGateway()
        scanner = FakeScanner({"www.example.com", "API.example.com"})
        orchestrator = make_orchestrator(tmp_path, scanner, gateway)

        result = asyncio.run(orchestrator.lookup("example.com"))

        assert result.source == ResolutionSource.SCAN
        assert result.hostnames == ["api.example.com", "www.example.com"]
        assert sorted(r.sub for r in result.added) == result.hostnames
        assert result.published_cid == "QmPub0"
        assert result.errors == []

        published = DomainRecord.from_json(gateway.published[0])
        assert published.hostnames == ["api.example.com", "www.example.com"]
        assert ManifestStore(tmp_path / "manifest.json").load().cid_for("example.com") == "QmPub0"

        records = orchestrator.store.load_records("example.com")
        assert all(r.source_mask == int(SourceBit.SCAN) for r in records)
        assert all(r.first_seen == utc_timestamp(NOW) for r in records)

    def test_no_publish_flag_keeps_results_local(self, tmp_path: Path) -> None:
        gateway = FakeGateway()
        orchestrator = make_orchestrator(tmp_path, FakeScanner({"www.example.com"}), gateway)

        result = asyncio.run(orchestrator.lookup("example.com", publish=False))

        assert result.hostnames == ["www.example.com"]
        assert result.published_cid is None
        assert gateway.published == []

    def test_publish_failure_is_reported_not_raised(self, tmp_path: Path) -> None:
        gateway = FakeGateway(available=False)
        orchestrator = make_orchestrator(tmp_path, FakeScanner({"www.example.com"}), gateway)

        result = asyncio.run(orchestrator.lookup("example.com"))

        assert result.hostnames == ["www.example.com"]
        assert result.published_cid is None
        assert len(result.errors) == 1
        assert result.errors[0].startswith("publish failed")

    def test_rescan_without_new_hosts_does_not_republish(self, tmp_path: Path) -> None:
        gateway = FakeGateway()
        scanner = FakeScanner({"www.example.com"})
        orchestrator = make_orchestrator(tmp_path, scanner, gateway)

        asyncio.run(orchestrator.lookup("example.com"))
        again = asyncio.run(orchestrator.lookup("example.com", rescan=True))

        assert again.source == ResolutionSource.SCAN
        assert again.added == []
        assert again.published_cid is None
        assert len(gateway.published) == 1
        assert scanner.calls == ["example.com", "example.com"]

    def test_rescan_adds_to_existing_results(self, tmp_path: Path) -> None:
        scanner = FakeScanner({"www.example.com"})
        orchestrator = make_orchestrator(tmp_path, scanner)

        asyncio.run(orchestrator.lookup("example.com", use_network=False))
        scanner.hosts = {"mail.example.com"}
        result = asyncio.run(orchestrator.lookup("example.com", rescan=True, use_network=False))

        assert result.hostnames == ["mail.example.com", "www.example.com"]
        assert [r.sub for r in result.added] == ["mail.example.com"]


class TestScanFailures:
    """Scanner errors with and without cached results."""

    def test_failure_without_cache_raises(self, tmp_path: Path) -> None:
        scanner = FakeScanner(error=ToolNotFoundError(code="tool_not_found", message="subfinder missing"))
        orchestrator = make_orchestrator(tmp_path, scanner)

        with pytest.raises(ToolNotFoundError):
            asyncio.run(orchestrator.lookup("example.com", use_network=False))

    def test_failed_rescan_falls_back_to_cache(self, tmp_path: Path) -> None:
        scanner = FakeScanner({"www.example.com"})
        orchestrator = make_orchestrator(tmp_path, scanner)
        asyncio.run(orchestrator.lookup("example.com", use_network=False))

        scanner.error = ScanExecutionError(code="timeout", message="scanner timed out")
        result = asyncio.run(orchestrator.lookup("example.com", rescan=True, use_network=False))

        assert result.source == ResolutionSource.LOCAL
        assert result.hostnames == ["www.example.com"]
        assert result.errors == ["scan failed: scanner timed out"]


class TestAutoSync:
    """Automatic synchronization gating."""

    def _seed(self, orchestrator: SubdomainOrchestrator) -> None:
        asyncio.run(orchestrator.lookup("example.com", use_network=False))

    def test_first_run_syncs_and_records_time(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("SUBLEDGER_NO_AUTO_SYNC", raising=False)
        gateway = FakeGateway()
        gateway.blobs["QmRec"] = record_blob("example.org", ["www.example.org"])
        manifest = Manifest()
        manifest.set_cid("example.org", "QmRec")
        orchestrator = make_orchestrator(tmp_path, FakeScanner(), gateway, manifest)

        result = asyncio.run(orchestrator.auto_sync())

        assert result is not None
        assert result.synced_domains == ["example.org"]
        assert orchestrator.store.list_subdomains("example.org") == ["www.example.org"]
        assert orchestrator.read_last_sync() == NOW

    def test_disabled_by_environment(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("SUBLEDGER_NO_AUTO_SYNC", "1")
        orchestrator = make_orchestrator(tmp_path, FakeScanner())

        assert orchestrator.auto_sync_enabled() is False
        assert asyncio.run(orchestrator.auto_sync()) is None
        assert not (tmp_path / "last_sync").exists()

    def test_disabled_by_config(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("SUBLEDGER_NO_AUTO_SYNC", raising=False)
        orchestrator = make_orchestrator(tmp_path, FakeScanner(), sync=SyncConfig(auto_sync=False))

        assert asyncio.run(orchestrator.auto_sync()) is None

    def test_recent_sync_is_not_repeated(self, tmp_path: Path) -> None:
        orchestrator = make_orchestrator(tmp_path, FakeScanner({"www.example.com"}))
        self._seed(orchestrator)
        (tmp_path / "last_sync").write_text(utc_timestamp(NOW - timedelta(hours=1)))

        assert orchestrator.should_auto_sync() is False

    def test_stale_sync_is_due(self, tmp_path: Path) -> None:
        orchestrator = make_orchestrator(
            tmp_path, FakeScanner({"www.example.com"}), sync=SyncConfig(interval_hours=6)
        )
        self._seed(orchestrator)
        (tmp_path / "last_sync").write_text(utc_timestamp(NOW - timedelta(hours=7)))

        assert orchestrator.should_auto_sync() is True

    def test_missing_or_invalid_last_sync_is_due(self, tmp_path: Path) -> None:
        orchestrator = make_orchestrator(tmp_path, FakeScanner({"www.example.com"}))
        self._seed(orchestrator)
        assert orchestrator.should_auto_sync() is True

        (tmp_path / "last_sync").write_text("yesterday-ish")
        assert orchestrator.read_last_sync() is None
        assert orchestrator.should_auto_sync() is True

    def test_empty_store_is_always_due(self, tmp_path: Path) -> None:
        orchestrator = make_orchestrator(tmp_path, FakeScanner())
        (tmp_path / "last_sync").write_text(utc_timestamp(NOW))

        assert orchestrator.should_auto_sync() is True
