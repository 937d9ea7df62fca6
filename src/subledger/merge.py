"""
Merge Engine for reconciling discovered hostnames with the domain store.

A merge loads the existing snapshot, refreshes records that were seen again,
creates records for new hostnames, rewrites the snapshot, and records the
genuinely new records as a delta batch.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger, null_logger
from .domain_store import DomainStore
from .hostname import normalize_host
from .models import DeltaBatch, SubdomainRecord, utc_timestamp


@dataclass
class MergeOutcome:
    """Detailed result of a merge."""

    domain: str
    added: list[SubdomainRecord] = field(default_factory=list)
    updated: int = 0
    total: int = 0
    delta: Optional[DeltaBatch] = None


def fold_record(records: dict[str, SubdomainRecord], record: SubdomainRecord) -> None:
    """Add a stored record, combining it with an earlier line for the same host."""
    prior = records.get(record.sub)
    if prior is None:
        records[record.sub] = record
        return
    prior.source_mask |= record.source_mask
    if record.first_seen and (not prior.first_seen or record.first_seen < prior.first_seen):
        prior.first_seen = record.first_seen
    if record.last_seen > prior.last_seen:
        prior.last_seen = record.last_seen


class MergeEngine:
    """
    Reconciles newly discovered hostnames against the domain store.

    Re-observing a hostname only refreshes ``last_seen`` and ORs in the
    source bit; ``first_seen`` and previously recorded bits never change.
    """

    def __init__(
        self,
        store: DomainStore,
        logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the merge engine.

        Args:
            store: Domain store to read from and write to
            logger: Optional audit logger
            clock: Returns the current UTC time; injectable for tests
        """
        self._store = store
        self._log = (logger or null_logger()).for_component("MergeEngine")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def merge(
        self,
        domain: str,
        found: Iterable[str],
        source_bit: int,
    ) -> list[SubdomainRecord]:
        """
        Merge discovered hostnames into the store of a domain.

        Args:
            domain: Root domain
            found: Raw hostnames from a discovery source
            source_bit: Bit identifying the discovery source

        Returns:
            Records created by this merge (empty if nothing was new)

        Raises:
            PersistenceError: If the store cannot be read or written
        """
        return self.merge_batch(domain, found, source_bit).added

    def merge_batch(
        self,
        domain: str,
        found: Iterable[str],
        source_bit: int,
    ) -> MergeOutcome:
        """Merge like merge() but also report update counts and the delta written."""
        moment = self._clock()
        now = utc_timestamp(moment)
        outcome = MergeOutcome(domain=domain)

        with self._store.domain_lock(domain):
            existing: dict[str, SubdomainRecord] = {}
            self._store.iter_records(
                domain, lambda record: fold_record(existing, record)
            )

            for raw in found:
                sub = normalize_host(raw)
                if not sub:
                    continue

                record = existing.get(sub)
                if record is not None:
                    record.last_seen = now
                    record.source_mask |= int(source_bit)
                    outcome.updated += 1
                else:
                    record = SubdomainRecord(
                        sub=sub,
                        first_seen=now,
                        last_seen=now,
                        source_mask=int(source_bit),
                    )
                    existing[sub] = record
                    outcome.added.append(record)

            self._store.write_snapshot(domain, existing.values())

            if outcome.added:
                outcome.delta = self._store.write_delta(domain, outcome.added, moment)

        outcome.total = len(existing)
        self._log.info(
            "Merge complete",
            {
                "domain": domain,
                "added": len(outcome.added),
                "updated": outcome.updated,
                "total": outcome.total,
                "source_bit": int(source_bit),
            },
        )
        return outcome
