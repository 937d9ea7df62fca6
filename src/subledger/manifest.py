"""
Manifest module for the local network configuration.

The manifest maps root domains to the content addresses of their published
records and lists the gateways used for fetching. It doubles as the local view
of the global index.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .audit_logger import AuditLogger, null_logger
from .config import DEFAULT_PRIMARY_GATEWAYS
from .exceptions import PersistenceError
from .models import is_valid_cid


@dataclass
class RootEntry:
    """Known content address for one root domain."""

    shard_cid: str


@dataclass
class Manifest:
    """Domain to content-address mapping plus the ordered gateway list."""

    roots: dict[str, RootEntry] = field(default_factory=dict)
    gateways: list[str] = field(default_factory=lambda: list(DEFAULT_PRIMARY_GATEWAYS))
    index_cid: Optional[str] = None

    def cid_for(self, domain: str) -> str:
        """Return the shard content address of a domain, or "" if unknown."""
        entry = self.roots.get(domain)
        return entry.shard_cid if entry else ""

    def set_cid(self, domain: str, cid: str) -> None:
        self.roots[domain] = RootEntry(shard_cid=cid)

    def to_dict(self) -> dict:
        data = {
            "roots": {
                domain: {"shard_cid": entry.shard_cid}
                for domain, entry in sorted(self.roots.items())
            },
            "gateways": list(self.gateways),
        }
        if self.index_cid:
            data["index_cid"] = self.index_cid
        return data


class ManifestStore:
    """
    Loads and saves the manifest file.

    Loading never fails: an absent or malformed file yields the defaults, and
    missing fields of an otherwise valid file are backfilled.
    """

    def __init__(self, file_path: Path, logger: Optional[AuditLogger] = None) -> None:
        self._file_path = Path(file_path)
        self._log = (logger or null_logger()).for_component("Manifest")

    @property
    def file_path(self) -> Path:
        return self._file_path

    def load(self) -> Manifest:
        """Load the manifest, falling back to defaults."""
        if not self._file_path.exists():
            return Manifest()

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except (OSError, ValueError) as e:
            self._log.warn(
                "Invalid manifest file, using defaults",
                {"file_path": str(self._file_path), "error": str(e)},
            )
            return Manifest()

        if not isinstance(raw_data, dict):
            self._log.warn(
                "Manifest is not a JSON object, using defaults",
                {"file_path": str(self._file_path)},
            )
            return Manifest()

        manifest = Manifest()

        raw_roots = raw_data.get("roots")
        if isinstance(raw_roots, dict):
            for domain, entry in raw_roots.items():
                if isinstance(entry, dict) and is_valid_cid(entry.get("shard_cid")):
                    manifest.roots[domain] = RootEntry(shard_cid=entry["shard_cid"])

        raw_gateways = raw_data.get("gateways")
        if isinstance(raw_gateways, list):
            gateways = [g for g in raw_gateways if isinstance(g, str) and g]
            if gateways:
                manifest.gateways = gateways

        index_cid = raw_data.get("index_cid")
        if is_valid_cid(index_cid):
            manifest.index_cid = index_cid

        return manifest

    def save(self, manifest: Manifest) -> None:
        """
        Write the full manifest.

        Raises:
            PersistenceError: If the directory or file cannot be written
        """
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "w", encoding="utf-8") as f:
                json.dump(manifest.to_dict(), f, indent=2)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write manifest: {e}",
                details={"file_path": str(self._file_path)},
            ) from e
