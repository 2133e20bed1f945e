"""
Mapping Service - Single-writer facade over a record store and the engines.

Reads (grouping, suggestions, stats) work on snapshots and need no lock.
Every mutation (ingest, match, unmatch, move, delete, admin edits) runs
under one lock so group keys and id allocation never see interleaved writes.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from . import matcher
from .catalog import ReferenceCatalog, seed_masters
from .config import MatchSettings, TaxonomyConfig
from .errors import MatchError, UnknownMasterId, UnknownRecordId
from .feeds import SupplierFeed, dedupe, to_supplier_record
from .grouping import filter_records, group_records
from .models import (
    BatchEntry,
    Group,
    MasterRecord,
    MasterStats,
    MasterSuggestion,
    MatchOutcome,
    MatchProposal,
    RawSupplierRecord,
    RecordStatus,
    SupplierRecord,
    advance,
    utc_now,
)
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Outcome of merging supplier rows into the store."""
    added: list[SupplierRecord] = field(default_factory=list)
    duplicates: int = 0
    failed_suppliers: dict[str, str] = field(default_factory=dict)


@dataclass
class UnmatchResult:
    unmatched: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # selected but never linked


class MappingService:
    """
    Commands and queries for one taxonomy.

    Args:
        store: Where supplier and master records live
        taxonomy: Id namespace for masters this service allocates
        catalog: Reference catalog for grouping and master naming
        settings: Matching thresholds and weights
    """

    def __init__(
        self,
        store: RecordStore,
        taxonomy: TaxonomyConfig,
        catalog: Optional[ReferenceCatalog] = None,
        settings: Optional[MatchSettings] = None,
    ):
        self.store = store
        self.taxonomy = taxonomy
        self.catalog = catalog
        self.settings = settings or MatchSettings()
        self._write_lock = threading.RLock()

    def _allocate_id(self) -> str:
        return self.store.next_master_id(self.taxonomy.id_prefix, self.taxonomy.id_width)

    # ============== Queries ==============

    def records(
        self,
        search: Optional[str] = None,
        status: Optional[RecordStatus] = None,
        supplier_id: Optional[str] = None,
    ) -> list[SupplierRecord]:
        return filter_records(self.store.list_records(), search, status, supplier_id)

    def groups(
        self,
        search: Optional[str] = None,
        status: Optional[RecordStatus] = None,
        supplier_id: Optional[str] = None,
    ) -> dict[str, Group]:
        """Recompute groups over the (optionally filtered) current records."""
        return group_records(self.records(search, status, supplier_id), self.catalog, self.settings)

    def masters(self) -> list[MasterRecord]:
        return self.store.list_masters()

    def master_stats(self, master_id: str) -> MasterStats:
        stats = self.store.master_stats(master_id)
        if stats is None:
            raise UnknownMasterId(master_id)
        return stats

    def summary(self) -> dict:
        return summarize(self.store.list_records())

    def suggest_masters(self, record_id: str, limit: Optional[int] = None) -> list[MasterSuggestion]:
        record = self._get_record(self.store.records_by_id(), record_id)
        return matcher.suggest_masters(
            record,
            self.store.list_masters(),
            code_bonus=self.settings.code_bonus,
            limit=limit or self.settings.suggestion_limit,
        )

    def _get_record(self, records: dict[str, SupplierRecord], record_id: str) -> SupplierRecord:
        record = records.get(record_id)
        if record is None:
            raise UnknownRecordId(record_id)
        return record

    # ============== Ingestion ==============

    def ingest(self, raw_records: Iterable[RawSupplierRecord]) -> IngestResult:
        """Append new supplier rows, skipping any (supplier_id, local_id) already present."""
        raw_records = list(raw_records)
        with self._write_lock:
            existing = {r.dedup_key for r in self.store.list_records()}
            unique = dedupe(raw_records, existing)
            now = utc_now()
            added = [to_supplier_record(raw, now=now) for raw in unique]
            if added:
                self.store.add_records(added)

        result = IngestResult(added=added, duplicates=len(raw_records) - len(unique))
        logger.info(f"Ingested {len(added)} records ({result.duplicates} duplicates skipped)")
        return result

    def resync(self, feeds: list[SupplierFeed], max_workers: int = 4) -> IngestResult:
        """
        Fetch every feed in parallel, then merge through the write path.

        A failing feed is reported in `failed_suppliers`; the others still ingest.
        """
        fetched: list[RawSupplierRecord] = []
        failed: dict[str, str] = {}

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [(feed, pool.submit(feed.fetch)) for feed in feeds]
            for feed, future in futures:
                try:
                    fetched.extend(future.result())
                except (OSError, ValueError) as e:
                    logger.error(f"Failed to fetch feed for {feed.supplier_id}: {e}")
                    failed[feed.supplier_id] = str(e)

        result = self.ingest(fetched)
        result.failed_suppliers = failed
        return result

    def seed_catalog(self) -> list[MasterRecord]:
        """Create a master per catalog entry; entries already seeded are skipped."""
        if self.catalog is None:
            return []
        with self._write_lock:
            existing = {m.id for m in self.store.list_masters()}
            seeded = [
                m for m in seed_masters(self.catalog, self.taxonomy.seed_prefix, self.taxonomy.seed_width)
                if m.id not in existing
            ]
            if seeded:
                self.store.save_masters(seeded)
        logger.info(f"Seeded {len(seeded)} masters from catalog {self.catalog.version}")
        return seeded

    # ============== Matching ==============

    def auto_match(self, **filters) -> MatchOutcome:
        """Auto-match every group of the (optionally filtered) record set."""
        with self._write_lock:
            groups = self.groups(**filters)
            outcome = matcher.auto_match_all(groups, self._allocate_id, self.catalog)
            self.store.apply(outcome)
        return outcome

    def auto_map(self) -> MatchOutcome:
        """Map PENDING records straight onto existing masters above the threshold."""
        with self._write_lock:
            outcome = matcher.auto_map_to_masters(
                self.store.list_records(),
                self.store.list_masters(),
                threshold=self.settings.auto_map_threshold,
                code_bonus=self.settings.code_bonus,
            )
            self.store.apply(outcome)
        return outcome

    def propose_manual_match(
        self,
        record_ids: Iterable[str],
        group_key: Optional[str] = None,
        target_master_id: Optional[str] = None,
    ) -> MatchProposal:
        records = self.store.records_by_id()
        selection = [self._get_record(records, rid) for rid in dict.fromkeys(record_ids)]
        if target_master_id is not None and self.store.get_master(target_master_id) is None:
            raise UnknownMasterId(target_master_id)
        return matcher.propose_manual_match(selection, group_key, target_master_id)

    def commit(self, proposal: MatchProposal) -> MatchOutcome:
        """Confirm a proposal. Nothing is written if validation fails."""
        with self._write_lock:
            records = self.store.list_records()
            scores = _placement_scores(group_records(records, self.catalog, self.settings))
            outcome = matcher.commit(
                proposal,
                {r.id: r for r in records},
                self.store.masters_by_id(),
                self._allocate_id,
                catalog=self.catalog,
                scores=scores,
            )
            self.store.apply(outcome)
        return outcome

    def manual_match(self, record_ids: Iterable[str], group_key: Optional[str] = None) -> MatchOutcome:
        """Propose and immediately confirm."""
        return self.commit(self.propose_manual_match(record_ids, group_key))

    def batch_manual_match(self, selections: dict[str, Iterable[str]]) -> list[BatchEntry]:
        """
        Confirm independent selections from several groups at once.

        Each non-empty selection is its own transaction; a rejected selection
        is reported in its entry and does not undo the others.
        """
        entries = []
        for group_key, record_ids in selections.items():
            record_ids = list(dict.fromkeys(record_ids))
            if not record_ids:
                continue
            entry = BatchEntry(group_key=group_key, record_ids=record_ids)
            try:
                proposal = self.propose_manual_match(record_ids, group_key)
                outcome = self.commit(proposal)
            except MatchError as e:
                logger.warning(f"Batch selection for group {group_key!r} rejected: {e}")
                entry.error = str(e)
            else:
                entry.master_id = outcome.master_ids[0]
                entry.warnings = list(proposal.warnings)
            entries.append(entry)

        ok = sum(1 for e in entries if e.ok)
        logger.info(f"Batch match: {ok}/{len(entries)} selections committed")
        return entries

    def unmatch(self, record_ids: Iterable[str]) -> UnmatchResult:
        """Revert selected records to PENDING; records with no master id are skipped."""
        with self._write_lock:
            records = self.store.records_by_id()
            selection = [self._get_record(records, rid) for rid in dict.fromkeys(record_ids)]
            linked = [r for r in selection if r.master_id]
            result = UnmatchResult(skipped=[r.id for r in selection if not r.master_id])
            outcome = matcher.unmatch(linked)
            self.store.apply(outcome)
            result.unmatched = [r.id for r in outcome.updated]
        return result

    def move(self, record_id: str, target_master_id: str) -> SupplierRecord:
        with self._write_lock:
            record = self._get_record(self.store.records_by_id(), record_id)
            moved = matcher.move(record, target_master_id, self.store.masters_by_id())
            self.store.save_records([moved])
        return moved

    def map_to_master(self, record_id: str, master_id: str) -> SupplierRecord:
        """Link one record to a master picked by a human, keeping its suggestion score."""
        with self._write_lock:
            record = self._get_record(self.store.records_by_id(), record_id)
            masters = self.store.masters_by_id()
            if master_id not in masters:
                raise UnknownMasterId(master_id)
            confidence = next(
                (s.confidence for s in matcher.suggest_masters(record, [masters[master_id]], self.settings.code_bonus)),
                None,
            )
            mapped = matcher.map_to_master(record, master_id, masters, confidence)
            self.store.save_records([mapped])
        logger.info(f"Mapped {record_id} onto {master_id} ({confidence})")
        return mapped

    # ============== Administration ==============

    def delete_record(self, record_id: str):
        """Remove a supplier record entirely, whatever its mapping state."""
        with self._write_lock:
            if not self.store.delete_record(record_id):
                raise UnknownRecordId(record_id)
        logger.info(f"Deleted supplier record {record_id}")

    def set_master_active(self, master_id: str, active: bool) -> MasterRecord:
        with self._write_lock:
            master = self.store.get_master(master_id)
            if master is None:
                raise UnknownMasterId(master_id)
            master = replace(master, is_active=active, updated_at=advance(master.updated_at))
            self.store.save_masters([master])
        return master

    def create_master(
        self,
        canonical_name: str,
        primary_code: Optional[str] = None,
        standard_code: Optional[str] = None,
        alternate_names: Optional[list[str]] = None,
    ) -> MasterRecord:
        """Create a master by hand in the engine's id namespace."""
        if not canonical_name or not canonical_name.strip():
            raise ValueError("canonical_name is required")
        with self._write_lock:
            now = utc_now()
            master = MasterRecord(
                id=self._allocate_id(),
                canonical_name=canonical_name.strip(),
                primary_code=primary_code,
                standard_code=standard_code,
                alternate_names=list(alternate_names or []),
                created_at=now,
                updated_at=now,
            )
            self.store.save_masters([master])
        logger.info(f"Created master {master.id} ({master.canonical_name})")
        return master


def _placement_scores(groups: dict[str, Group]) -> dict[str, int]:
    scores = {}
    for group in groups.values():
        scores.update(group.scores)
    return scores


def summarize(records: list[SupplierRecord]) -> dict:
    """Counts by status for dashboards."""
    counts = {
        "total": len(records),
        "pending": 0,
        "mapped": 0,
        "review": 0,
    }
    for record in records:
        if record.status == RecordStatus.PENDING:
            counts["pending"] += 1
        elif record.status == RecordStatus.MAPPED:
            counts["mapped"] += 1
        elif record.status == RecordStatus.NEEDS_REVIEW:
            counts["review"] += 1
    return counts
