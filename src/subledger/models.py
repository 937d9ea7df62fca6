"""
Data models for the subledger system.

This module defines the per-domain subdomain records kept in the local store,
the delta batches produced by merges, the bundles exchanged with the content
network, and the explicit result structures returned by the resolver and
orchestrator.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .enums import ResolutionSource
from .exceptions import CorruptDataError


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

MAX_CID_LENGTH = 256

# Content ids are appended to gateway URLs; no whitespace, control or URL delimiter chars.
CID_PATTERN = re.compile(r"[A-Za-z0-9._~+=:-]+")


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a moment (default: now) as an RFC 3339 UTC timestamp."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def is_valid_cid(value: Any) -> bool:
    """Check that a content id from an untrusted source is safe to put in a URL."""
    return (
        isinstance(value, str)
        and 0 < len(value) <= MAX_CID_LENGTH
        and CID_PATTERN.fullmatch(value) is not None
    )


@dataclass
class SubdomainRecord:
    """One distinct hostname observed under a root domain."""

    sub: str
    first_seen: str
    last_seen: str
    source_mask: int

    def to_dict(self) -> dict:
        """Serialize using the on-disk field names."""
        return {
            "sub": self.sub,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "src_bits": self.source_mask,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SubdomainRecord":
        """
        Build a record from its serialized form.

        Raises:
            CorruptDataError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise CorruptDataError(
                code="invalid_record",
                message="Record is not a JSON object",
                details={"record": repr(data)[:200]},
            )

        sub = data.get("sub")
        src_bits = data.get("src_bits", 0)
        if not isinstance(sub, str) or not sub:
            raise CorruptDataError(
                code="invalid_record",
                message="Record has no 'sub' field",
                details={"record": data},
            )
        if not isinstance(src_bits, int) or isinstance(src_bits, bool):
            raise CorruptDataError(
                code="invalid_record",
                message="Record 'src_bits' is not an integer",
                details={"record": data},
            )

        return cls(
            sub=sub,
            first_seen=str(data.get("first_seen", "")),
            last_seen=str(data.get("last_seen", "")),
            source_mask=src_bits,
        )


@dataclass
class DeltaBatch:
    """Immutable batch of records newly created by a single merge."""

    domain: str
    created_at: str
    path: Path
    records: list[SubdomainRecord] = field(default_factory=list)


@dataclass
class DomainRecord:
    """A domain's full state as published to the content network."""

    domain: str
    subdomains: list[SubdomainRecord]
    last_updated: str
    contributors: list[str] = field(default_factory=list)
    content_hash: str = ""
    version: int = 1

    def to_json(self) -> bytes:
        payload = {
            "domain": self.domain,
            "subdomains": [record.to_dict() for record in self.subdomains],
            "last_updated": self.last_updated,
            "contributors": self.contributors,
            "content_hash": self.content_hash,
            "version": self.version,
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "DomainRecord":
        """
        Parse a fetched domain record blob.

        Entries in 'subdomains' may be record objects or bare hostname strings;
        entries that are neither are dropped.

        Raises:
            CorruptDataError: If the blob is not a domain record
        """
        data = _load_json_object(raw, "domain record")

        domain = data.get("domain")
        raw_subs = data.get("subdomains")
        if not isinstance(domain, str) or not isinstance(raw_subs, list):
            raise CorruptDataError(
                code="invalid_domain_record",
                message="Domain record lacks 'domain' or 'subdomains'",
                details={"keys": sorted(data.keys())},
            )

        subdomains = []
        for item in raw_subs:
            if isinstance(item, str) and item:
                subdomains.append(SubdomainRecord(item, "", "", 0))
                continue
            try:
                subdomains.append(SubdomainRecord.from_dict(item))
            except CorruptDataError:
                continue

        contributors = data.get("contributors") or []
        version = data.get("version", 1)
        return cls(
            domain=domain,
            subdomains=subdomains,
            last_updated=str(data.get("last_updated", "")),
            contributors=[c for c in contributors if isinstance(c, str)],
            content_hash=str(data.get("content_hash") or data.get("ipfs_hash") or ""),
            version=version if isinstance(version, int) else 1,
        )

    @property
    def hostnames(self) -> list[str]:
        return [record.sub for record in self.subdomains]


@dataclass
class GlobalIndex:
    """Mapping from domain name to the latest known record content hash."""

    domains: dict[str, str] = field(default_factory=dict)
    last_updated: str = ""
    peer_id: str = ""

    def to_json(self) -> bytes:
        payload = {
            "domains": dict(sorted(self.domains.items())),
            "last_updated": self.last_updated,
            "peer_id": self.peer_id,
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "GlobalIndex":
        """
        Parse a fetched global index blob.

        Raises:
            CorruptDataError: If the blob is not an index
        """
        data = _load_json_object(raw, "global index")
        domains = data.get("domains")
        if not isinstance(domains, dict):
            raise CorruptDataError(
                code="invalid_index",
                message="Global index lacks a 'domains' mapping",
                details={"keys": sorted(data.keys())},
            )
        return cls(
            domains={
                str(name): cid
                for name, cid in domains.items()
                if is_valid_cid(cid)
            },
            last_updated=str(data.get("last_updated", "")),
            peer_id=str(data.get("peer_id", "")),
        )

    def cid_for(self, domain: str) -> Optional[str]:
        return self.domains.get(domain)


@dataclass
class ResolveResult:
    """Outcome of a successful tiered lookup."""

    domain: str
    hostnames: list[str]
    source: ResolutionSource
    content_hash: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of a network synchronization pass."""

    synced: int = 0
    attempted: int = 0
    cancelled: bool = False
    synced_domains: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class DomainInfo:
    """Summary of a domain available in the network index."""

    domain: str
    content_hash: str
    subdomain_count: int = 0
    last_updated: str = ""
    contributors: list[str] = field(default_factory=list)


@dataclass
class NetworkStatus:
    """Status report for the network tier."""

    node_available: bool
    peer_count: int = 0
    peer_error: Optional[str] = None
    domains_in_network: Optional[int] = None
    index_last_updated: Optional[str] = None
    index_error: Optional[str] = None

    @property
    def connected_peers(self) -> bool:
        return self.peer_count > 0


@dataclass
class LookupResult:
    """Outcome of an orchestrated lookup (network, cache or scan)."""

    domain: str
    hostnames: list[str]
    source: ResolutionSource
    added: list[SubdomainRecord] = field(default_factory=list)
    published_cid: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    duration_ms: float = 0.0


def _load_json_object(raw: bytes, what: str) -> dict:
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise CorruptDataError(
            code="parse_error",
            message=f"Failed to parse {what}: {e}",
            details={"size": len(raw)},
        ) from e
    if not isinstance(data, dict):
        raise CorruptDataError(
            code="parse_error",
            message=f"{what.capitalize()} is not a JSON object",
            details={"type": type(data).__name__},
        )
    return data
