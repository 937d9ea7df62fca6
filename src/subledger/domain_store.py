"""
Domain Store module for persistent subdomain records.

Each root domain owns one zstd-compressed JSONL snapshot, sorted by hostname,
that is replaced as a whole on every write. Merges additionally leave
immutable delta files behind for publishing and auditing.
"""

import io
import json
import os
import tempfile
import threading
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

import zstandard

from .audit_logger import AuditLogger, null_logger
from .exceptions import CorruptDataError, PersistenceError
from .models import DeltaBatch, SubdomainRecord, utc_timestamp


STORE_SUFFIX = ".jsonl.zst"
DELTA_MARKER = ".delta-"
DELTA_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S.%fZ"


class DomainStore:
    """
    Compressed, snapshot-replaced storage of subdomain records per domain.

    Layout under the base directory::

        cache/<domain>.jsonl.zst
        deltas/<domain>.delta-<UTC timestamp>.jsonl.zst
    """

    def __init__(self, base_dir: Path, logger: Optional[AuditLogger] = None) -> None:
        """
        Initialize the store, creating its directories.

        Args:
            base_dir: Root data directory
            logger: Logger used for corrupt-line warnings

        Raises:
            PersistenceError: If the store directories cannot be created
        """
        self._base_dir = Path(base_dir)
        self._cache_dir = self._base_dir / "cache"
        self._delta_dir = self._base_dir / "deltas"
        self._log = (logger or null_logger()).for_component("DomainStore")
        self._locks: dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

        for directory in (self._cache_dir, self._delta_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PersistenceError(
                    code="init_error",
                    message=f"Failed to create store directory: {e}",
                    details={"path": str(directory)},
                ) from e

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def cache_path(self, domain: str) -> Path:
        """Return the snapshot path for a root domain."""
        _check_domain_name(domain)
        return self._cache_dir / f"{domain}{STORE_SUFFIX}"

    def delta_path(self, domain: str, moment: datetime) -> Path:
        """Return the delta path for a root domain at a given UTC moment."""
        _check_domain_name(domain)
        stamp = moment.astimezone(timezone.utc).strftime(DELTA_TIMESTAMP_FORMAT)
        return self._delta_dir / f"{domain}{DELTA_MARKER}{stamp}{STORE_SUFFIX}"

    def domain_lock(self, domain: str) -> threading.RLock:
        """Lock that serializes snapshot writes for one domain."""
        with self._locks_guard:
            return self._locks[domain]

    def iter_records(
        self,
        domain: str,
        visitor: Callable[[SubdomainRecord], None],
    ) -> None:
        """
        Stream every stored record of a domain to a visitor.

        A missing snapshot is treated as empty. Unparseable lines are skipped
        with a warning.

        Raises:
            PersistenceError: If the snapshot exists but cannot be read
        """
        path = self.cache_path(domain)
        if not path.exists():
            return
        for record in self._read_records(path):
            visitor(record)

    def load_records(self, domain: str) -> list[SubdomainRecord]:
        """Return all stored records of a domain in file order."""
        records: list[SubdomainRecord] = []
        self.iter_records(domain, records.append)
        return records

    def list_subdomains(self, domain: str) -> list[str]:
        """Return the unique stored hostnames of a domain, sorted ascending."""
        seen: set[str] = set()
        self.iter_records(domain, lambda record: seen.add(record.sub))
        return sorted(seen)

    def write_snapshot(self, domain: str, records: Iterable[SubdomainRecord]) -> Path:
        """
        Replace the snapshot of a domain with the given records.

        Records are sorted by hostname and written to a temporary file next to
        the snapshot, which is then atomically renamed over it.

        Raises:
            PersistenceError: If serialization, compression or disk I/O fails;
                the previous snapshot is left untouched
        """
        ordered = sorted(records, key=lambda record: record.sub)
        path = self.cache_path(domain)
        with self.domain_lock(domain):
            self._atomic_write(path, ordered)
        return path

    def list_domains(self) -> set[str]:
        """Return the names of all domains with a stored snapshot."""
        try:
            entries = list(self._cache_dir.iterdir())
        except OSError:
            return set()
        return {
            entry.name[: -len(STORE_SUFFIX)]
            for entry in entries
            if entry.is_file() and entry.name.endswith(STORE_SUFFIX)
        }

    def write_delta(
        self,
        domain: str,
        records: list[SubdomainRecord],
        moment: Optional[datetime] = None,
    ) -> DeltaBatch:
        """
        Persist newly created records as an immutable delta file.

        The file name carries a microsecond UTC timestamp; if that name is
        already taken a counter suffix is added so no delta is overwritten.

        Raises:
            PersistenceError: If the delta cannot be written
        """
        moment = moment or datetime.now(timezone.utc)
        path = self.delta_path(domain, moment)
        counter = 1
        while path.exists():
            stem = path.name[: -len(STORE_SUFFIX)]
            path = path.with_name(f"{stem.split('~')[0]}~{counter}{STORE_SUFFIX}")
            counter += 1

        self._atomic_write(path, list(records))
        self._log.debug(
            "Delta written",
            {"domain": domain, "path": str(path), "records": len(records)},
        )
        return DeltaBatch(
            domain=domain,
            created_at=utc_timestamp(moment),
            path=path,
            records=list(records),
        )

    def list_deltas(self, domain: str) -> list[Path]:
        """Return the delta files of a domain, oldest first."""
        prefix = f"{domain}{DELTA_MARKER}"
        try:
            entries = list(self._delta_dir.iterdir())
        except OSError:
            return []
        return sorted(
            entry for entry in entries
            if entry.name.startswith(prefix) and entry.name.endswith(STORE_SUFFIX)
        )

    def read_delta(self, path: Path) -> list[SubdomainRecord]:
        """Read the records of a delta file."""
        return list(self._read_records(Path(path)))

    def _read_records(self, path: Path):
        try:
            with open(path, "rb") as raw:
                reader = zstandard.ZstdDecompressor().stream_reader(raw)
                text = io.TextIOWrapper(reader, encoding="utf-8", errors="replace")
                for line_no, line in enumerate(text, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield SubdomainRecord.from_dict(json.loads(line))
                    except (ValueError, CorruptDataError) as e:
                        self._log.warn(
                            "Skipping invalid record line",
                            {"path": str(path), "line": line_no, "error": str(e)},
                        )
        except (OSError, zstandard.ZstdError) as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read store file: {e}",
                details={"file_path": str(path)},
            ) from e

    def _atomic_write(self, path: Path, records: list[SubdomainRecord]) -> None:
        try:
            payload = "".join(
                json.dumps(record.to_dict(), separators=(",", ":")) + "\n"
                for record in records
            ).encode("utf-8")
            compressed = zstandard.ZstdCompressor().compress(payload)
        except (TypeError, ValueError, zstandard.ZstdError) as e:
            raise PersistenceError(
                code="serialization_error",
                message=f"Failed to encode records: {e}",
                details={"file_path": str(path)},
            ) from e

        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
            )
            with os.fdopen(fd, "wb") as f:
                f.write(compressed)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write store file: {e}",
                details={"file_path": str(path)},
            ) from e


def _check_domain_name(domain: str) -> None:
    # Domain names become file names; they must stay inside the store directories.
    if not domain or domain.startswith(".") or "/" in domain or "\\" in domain or "\x00" in domain:
        raise PersistenceError(
            code="invalid_domain",
            message=f"Invalid domain name for storage: {domain!r}",
            details={"domain": domain},
        )
