"""
Record Stores - Persistence for supplier and master records.

The store pattern lets us swap implementations (in-memory for tests and
demos, SQLite for real deployments) without changing engine logic.
Engines never see a store; the service reads snapshots from it and writes
mutation sets back through apply().
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .ids import MasterIdSequence, format_master_id, max_suffix
from .models import MasterRecord, MasterStats, MatchOutcome, RecordStatus, SupplierRecord

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """
    Abstract interface for supplier/master record persistence.

    Records come back in arrival order, which grouping depends on for
    naming groups.
    """

    @abstractmethod
    def list_records(self) -> list[SupplierRecord]:
        """All supplier records, in arrival order."""
        pass

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[SupplierRecord]:
        pass

    @abstractmethod
    def add_records(self, records: list[SupplierRecord]):
        """Insert new supplier records."""
        pass

    @abstractmethod
    def save_records(self, records: list[SupplierRecord]):
        """Update existing supplier records in place."""
        pass

    @abstractmethod
    def delete_record(self, record_id: str) -> bool:
        """Remove a supplier record entirely. Returns False if it did not exist."""
        pass

    @abstractmethod
    def list_masters(self) -> list[MasterRecord]:
        pass

    @abstractmethod
    def get_master(self, master_id: str) -> Optional[MasterRecord]:
        pass

    @abstractmethod
    def save_masters(self, masters: list[MasterRecord]):
        """Insert or update master records. Masters are never deleted."""
        pass

    @abstractmethod
    def next_master_id(self, prefix: str, width: int = 5) -> str:
        """Atomically allocate the next id in a namespace."""
        pass

    def apply(self, outcome: MatchOutcome):
        """Write an engine's mutation set: new masters first, then records."""
        if outcome.created:
            self.save_masters(outcome.created)
        if outcome.updated:
            self.save_records(outcome.updated)

    def records_by_id(self) -> dict[str, SupplierRecord]:
        return {r.id: r for r in self.list_records()}

    def masters_by_id(self) -> dict[str, MasterRecord]:
        return {m.id: m for m in self.list_masters()}

    def master_stats(self, master_id: str) -> Optional[MasterStats]:
        """Mapped count and supplier set, derived from current records."""
        master = self.get_master(master_id)
        if master is None:
            return None
        mapped = [r for r in self.list_records() if r.master_id == master_id and r.status == RecordStatus.MAPPED]
        return MasterStats(
            master=master,
            mapped_count=len(mapped),
            supplier_set=list(dict.fromkeys(r.supplier_id for r in mapped)),
        )


class InMemoryRecordStore(RecordStore):
    """
    Volatile store for tests and demos.

    Useful for unit tests where you want to control exact records.
    """

    def __init__(
        self,
        records: Optional[list[SupplierRecord]] = None,
        masters: Optional[list[MasterRecord]] = None,
    ):
        self._records: dict[str, SupplierRecord] = {r.id: r for r in records or []}
        self._masters: dict[str, MasterRecord] = {m.id: m for m in masters or []}
        self._sequences: dict[str, MasterIdSequence] = {}
        self._lock = threading.Lock()

    def list_records(self) -> list[SupplierRecord]:
        return list(self._records.values())

    def get_record(self, record_id: str) -> Optional[SupplierRecord]:
        return self._records.get(record_id)

    def add_records(self, records: list[SupplierRecord]):
        ids = set(self._records)
        keys = {r.dedup_key for r in self._records.values()}
        for record in records:
            if record.id in ids:
                raise ValueError(f"Duplicate supplier record id: {record.id}")
            if record.dedup_key in keys:
                raise ValueError(f"Duplicate supplier record: {record.supplier_id}/{record.supplier_local_id}")
            ids.add(record.id)
            keys.add(record.dedup_key)
        for record in records:
            self._records[record.id] = record
            self._observe(record.master_id)

    def save_records(self, records: list[SupplierRecord]):
        for record in records:
            if record.id not in self._records:
                raise KeyError(record.id)
        for record in records:
            self._records[record.id] = record
            self._observe(record.master_id)

    def apply(self, outcome: MatchOutcome):
        """Check every record exists before writing anything."""
        for record in outcome.updated:
            if record.id not in self._records:
                raise KeyError(record.id)
        super().apply(outcome)

    def delete_record(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def list_masters(self) -> list[MasterRecord]:
        return list(self._masters.values())

    def get_master(self, master_id: str) -> Optional[MasterRecord]:
        return self._masters.get(master_id)

    def save_masters(self, masters: list[MasterRecord]):
        for master in masters:
            self._masters[master.id] = master
            self._observe(master.id)

    def next_master_id(self, prefix: str, width: int = 5) -> str:
        with self._lock:
            sequence = self._sequences.get(prefix)
            if sequence is None:
                sequence = MasterIdSequence(prefix, width, self._known_ids())
                self._sequences[prefix] = sequence
        return sequence.next()

    def _known_ids(self) -> list[str]:
        linked = [r.master_id for r in self._records.values() if r.master_id]
        return [*self._masters.keys(), *linked]

    def _observe(self, master_id: Optional[str]):
        if not master_id:
            return
        for sequence in self._sequences.values():
            sequence.observe(master_id)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS supplier_records (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,  -- arrival order
        taxonomy TEXT NOT NULL,
        id TEXT NOT NULL,
        supplier_id TEXT NOT NULL,
        supplier_name TEXT,
        supplier_local_id TEXT NOT NULL,
        label TEXT NOT NULL,
        local_code TEXT,
        country_hint TEXT,
        country_code_hint TEXT,
        master_id TEXT,
        status TEXT DEFAULT 'pending',
        confidence INTEGER,
        created_at TEXT,
        updated_at TEXT,
        UNIQUE(taxonomy, id),
        UNIQUE(taxonomy, supplier_id, supplier_local_id)
    );

    CREATE TABLE IF NOT EXISTS master_records (
        taxonomy TEXT NOT NULL,
        id TEXT NOT NULL,
        canonical_name TEXT NOT NULL,
        primary_code TEXT,
        standard_code TEXT,
        alternate_names TEXT,  -- JSON list
        is_active INTEGER DEFAULT 1,
        created_at TEXT,
        updated_at TEXT,
        PRIMARY KEY (taxonomy, id)
    );

    -- Last allocated number per id namespace
    CREATE TABLE IF NOT EXISTS id_sequences (
        taxonomy TEXT NOT NULL,
        prefix TEXT NOT NULL,
        value INTEGER NOT NULL,
        PRIMARY KEY (taxonomy, prefix)
    );

    CREATE INDEX IF NOT EXISTS idx_supplier_records_master ON supplier_records(taxonomy, master_id);
    CREATE INDEX IF NOT EXISTS idx_supplier_records_status ON supplier_records(taxonomy, status);
"""

RECORD_COLUMNS = (
    "id", "supplier_id", "supplier_name", "supplier_local_id", "label", "local_code",
    "country_hint", "country_code_hint", "master_id", "status", "confidence",
    "created_at", "updated_at",
)


class SqliteRecordStore(RecordStore):
    """
    SQLite-backed store, partitioned by taxonomy.

    One connection, explicit transactions. Writes use BEGIN IMMEDIATE so id
    allocation is atomic across processes sharing the database file.
    """

    def __init__(self, db_path: str | Path = ":memory:", taxonomy: str = "nationality"):
        self.db_path = str(db_path)
        self.taxonomy = taxonomy
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            if self.db_path != ":memory:":
                # WAL allows concurrent reads during writes
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.executescript(SCHEMA)

    @contextmanager
    def _transaction(self):
        """Serialized write transaction; rolls back on any error."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

    def close(self):
        self._conn.close()

    # ============== Supplier Records ==============

    def list_records(self) -> list[SupplierRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM supplier_records WHERE taxonomy = ? ORDER BY seq", (self.taxonomy,)
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def get_record(self, record_id: str) -> Optional[SupplierRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM supplier_records WHERE taxonomy = ? AND id = ?", (self.taxonomy, record_id)
            ).fetchone()
        return _row_to_record(row) if row else None

    def add_records(self, records: list[SupplierRecord]):
        placeholders = ", ".join("?" for _ in RECORD_COLUMNS)
        sql = f"INSERT INTO supplier_records (taxonomy, {', '.join(RECORD_COLUMNS)}) VALUES (?, {placeholders})"
        try:
            with self._transaction() as conn:
                conn.executemany(sql, [(self.taxonomy, *_record_values(r)) for r in records])
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Duplicate supplier record: {e}") from e

    def save_records(self, records: list[SupplierRecord]):
        assignments = ", ".join(f"{c} = ?" for c in RECORD_COLUMNS[1:])
        sql = f"UPDATE supplier_records SET {assignments} WHERE taxonomy = ? AND id = ?"
        with self._transaction() as conn:
            self._update_records(conn, sql, records)

    def _update_records(self, conn, sql: str, records: Iterable[SupplierRecord]):
        for record in records:
            values = _record_values(record)
            cursor = conn.execute(sql, (*values[1:], self.taxonomy, record.id))
            if cursor.rowcount == 0:
                raise KeyError(record.id)

    def delete_record(self, record_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM supplier_records WHERE taxonomy = ? AND id = ?", (self.taxonomy, record_id)
            )
        return cursor.rowcount > 0

    # ============== Master Records ==============

    def list_masters(self) -> list[MasterRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM master_records WHERE taxonomy = ? ORDER BY rowid", (self.taxonomy,)
            ).fetchall()
        return [_row_to_master(row) for row in rows]

    def get_master(self, master_id: str) -> Optional[MasterRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM master_records WHERE taxonomy = ? AND id = ?", (self.taxonomy, master_id)
            ).fetchone()
        return _row_to_master(row) if row else None

    def save_masters(self, masters: list[MasterRecord]):
        with self._transaction() as conn:
            self._upsert_masters(conn, masters)

    def _upsert_masters(self, conn, masters: Iterable[MasterRecord]):
        for m in masters:
            conn.execute("""
                INSERT INTO master_records
                    (taxonomy, id, canonical_name, primary_code, standard_code, alternate_names, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(taxonomy, id) DO UPDATE SET
                    canonical_name = excluded.canonical_name,
                    primary_code = excluded.primary_code,
                    standard_code = excluded.standard_code,
                    alternate_names = excluded.alternate_names,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
            """, (
                self.taxonomy, m.id, m.canonical_name, m.primary_code, m.standard_code,
                json.dumps(m.alternate_names), int(m.is_active),
                m.created_at.isoformat(), m.updated_at.isoformat(),
            ))

    def apply(self, outcome: MatchOutcome):
        """Masters and records in one transaction, so a failure writes nothing."""
        assignments = ", ".join(f"{c} = ?" for c in RECORD_COLUMNS[1:])
        sql = f"UPDATE supplier_records SET {assignments} WHERE taxonomy = ? AND id = ?"
        with self._transaction() as conn:
            self._upsert_masters(conn, outcome.created)
            self._update_records(conn, sql, outcome.updated)

    # ============== Id Sequences ==============

    def next_master_id(self, prefix: str, width: int = 5) -> str:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT value FROM id_sequences WHERE taxonomy = ? AND prefix = ?", (self.taxonomy, prefix)
            ).fetchone()
            if row is None:
                # First allocation in this namespace: start after anything already in use
                known = [r[0] for r in conn.execute(
                    "SELECT id FROM master_records WHERE taxonomy = ?", (self.taxonomy,))]
                known += [r[0] for r in conn.execute(
                    "SELECT master_id FROM supplier_records WHERE taxonomy = ? AND master_id IS NOT NULL",
                    (self.taxonomy,))]
                current = max_suffix(known, prefix)
            else:
                current = row["value"]
            current += 1
            conn.execute("""
                INSERT INTO id_sequences (taxonomy, prefix, value) VALUES (?, ?, ?)
                ON CONFLICT(taxonomy, prefix) DO UPDATE SET value = excluded.value
            """, (self.taxonomy, prefix, current))
        return format_master_id(current, prefix, width)


def _record_values(record: SupplierRecord) -> tuple:
    return (
        record.id, record.supplier_id, record.supplier_name, record.supplier_local_id,
        record.label, record.local_code, record.country_hint, record.country_code_hint,
        record.master_id, record.status.value, record.confidence,
        record.created_at.isoformat(), record.updated_at.isoformat(),
    )


def _row_to_record(row: sqlite3.Row) -> SupplierRecord:
    return SupplierRecord(
        id=row["id"],
        supplier_id=row["supplier_id"],
        supplier_name=row["supplier_name"] or "",
        supplier_local_id=row["supplier_local_id"],
        label=row["label"],
        local_code=row["local_code"],
        country_hint=row["country_hint"],
        country_code_hint=row["country_code_hint"],
        master_id=row["master_id"],
        status=RecordStatus(row["status"]),
        confidence=row["confidence"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_master(row: sqlite3.Row) -> MasterRecord:
    return MasterRecord(
        id=row["id"],
        canonical_name=row["canonical_name"],
        primary_code=row["primary_code"],
        standard_code=row["standard_code"],
        alternate_names=json.loads(row["alternate_names"] or "[]"),
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
