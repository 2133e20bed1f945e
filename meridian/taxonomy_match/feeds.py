"""
Supplier Feeds - Bridge to the supplier directory.

The adapter pattern lets us swap implementations (files for batch imports,
in-memory for tests, API clients elsewhere) without changing ingestion.
Malformed rows are dropped whole, never partially stored.
"""

import csv
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .config import Config, get_active_suppliers
from .models import RawSupplierRecord, SupplierRecord, utc_now

logger = logging.getLogger(__name__)

# Header variations accepted in supplier exports (matched case-insensitively)
COLUMN_PATTERNS = {
    "supplier_id": ["supplier_id", "supplierId", "Supplier ID", "supplier"],
    "supplier_name": ["supplier_name", "supplierName", "Supplier Name"],
    "local_id": ["local_id", "localId", "Local ID", "supplier_local_id", "Supplier Code", "id"],
    "label": ["label", "name", "Name", "Nationality", "nationality_name", "Description"],
    "local_code": ["local_code", "code", "Code", "nationality_code"],
    "country_hint": ["country_hint", "country", "Country", "country_name"],
    "country_code_hint": ["country_code_hint", "country_code", "Country Code"],
}

REQUIRED_FIELDS = ("supplier_id", "local_id", "label")


class SupplierFeed(ABC):
    """
    Abstract interface for one supplier's taxonomy feed.

    Implementations return raw rows; validation and de-duplication happen
    on ingestion.
    """

    @property
    @abstractmethod
    def supplier_id(self) -> str:
        pass

    @abstractmethod
    def fetch(self) -> list[RawSupplierRecord]:
        """Fetch the supplier's current taxonomy values."""
        pass


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_row(row: dict, defaults: Optional[dict] = None) -> Optional[RawSupplierRecord]:
    """
    Parse a feed row into a RawSupplierRecord.

    Returns None when a required field (supplier id, local id, label) is
    missing after defaults are applied.
    """
    values = dict(defaults or {})
    lowered = {str(k).strip().lower(): v for k, v in row.items() if k is not None}
    for field_name, patterns in COLUMN_PATTERNS.items():
        for pattern in patterns:
            value = _clean(lowered.get(pattern.lower()))
            if value is not None:
                values[field_name] = value
                break

    if any(not values.get(f) for f in REQUIRED_FIELDS):
        return None

    return RawSupplierRecord(
        supplier_id=values["supplier_id"],
        supplier_name=values.get("supplier_name") or values["supplier_id"],
        local_id=values["local_id"],
        label=values["label"],
        local_code=values.get("local_code"),
        country_hint=values.get("country_hint"),
        country_code_hint=values.get("country_code_hint"),
    )


class FileSupplierFeed(SupplierFeed):
    """
    Feed loaded from a supplier export file.

    CSV format expected:
        supplier_id,supplier_name,local_id,label,local_code,country_hint,country_code_hint
        ebooking,eBooking,EG_001,Egyptian,EG,Egypt,EG

    JSON format expected:
        [{"supplier_id": "ebooking", "local_id": "EG_001", "label": "Egyptian", ...}, ...]

    XLSX: first row holds the headers, data starts on the second row.
    Supplier id/name columns may be omitted when given to the constructor.
    """

    def __init__(self, data_path: str | Path, supplier_id: Optional[str] = None, supplier_name: Optional[str] = None):
        self._data_path = Path(data_path)
        self._supplier_id = supplier_id
        self._defaults = {}
        if supplier_id:
            self._defaults["supplier_id"] = supplier_id
        if supplier_name:
            self._defaults["supplier_name"] = supplier_name

    @property
    def supplier_id(self) -> str:
        return self._supplier_id or self._data_path.stem

    def fetch(self) -> list[RawSupplierRecord]:
        if not self._data_path.exists():
            raise FileNotFoundError(f"Supplier feed not found: {self._data_path}")

        suffix = self._data_path.suffix.lower()
        if suffix == ".csv":
            rows = self._load_csv()
        elif suffix == ".json":
            rows = self._load_json()
        elif suffix in (".xlsx", ".xlsm"):
            rows = self._load_xlsx()
        else:
            raise ValueError(f"Unsupported file format: {suffix}")

        records = []
        dropped = 0
        for row in rows:
            record = parse_row(row, self._defaults)
            if record is None:
                dropped += 1
                continue
            records.append(record)

        if dropped:
            logger.warning(f"Dropped {dropped} malformed rows from {self._data_path}")
        logger.info(f"Fetched {len(records)} records from {self._data_path}")
        return records

    def _load_csv(self) -> list[dict]:
        with open(self._data_path, "r", newline="", encoding="utf-8-sig") as f:
            return list(csv.DictReader(f))

    def _load_json(self) -> list[dict]:
        with open(self._data_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("records", [])
        if not isinstance(data, list):
            raise ValueError(f"Expected a list of rows in {self._data_path}, got {type(data).__name__}")
        return [row for row in data if isinstance(row, dict)]

    def _load_xlsx(self) -> list[dict]:
        try:
            workbook = load_workbook(self._data_path, read_only=True, data_only=True)
        except (BadZipFile, InvalidFileException) as e:
            raise ValueError(f"Unreadable workbook {self._data_path}: {e}") from e
        try:
            sheet = workbook.worksheets[0]
            rows = sheet.iter_rows(values_only=True)
            headers = next(rows, None)
            if headers is None:
                return []
            headers = [_decode_xml_value(str(h)) if h is not None else None for h in headers]
            return [dict(zip(headers, values)) for values in rows]
        finally:
            workbook.close()


def _decode_xml_value(value: str) -> str:
    """Decode Excel's _x0020_ style escapes in header names."""
    if "_x" not in value:
        return value
    return re.sub(r"_x([0-9A-Fa-f]{4})_", lambda m: chr(int(m.group(1), 16)), value)


class InMemorySupplierFeed(SupplierFeed):
    """
    In-memory feed for programmatic test setup.

    Rows may be RawSupplierRecords or plain dicts (validated like file rows).
    """

    def __init__(self, supplier_id: str, rows: Optional[list] = None):
        self._supplier_id = supplier_id
        self._rows = list(rows or [])

    @property
    def supplier_id(self) -> str:
        return self._supplier_id

    def add_row(self, row):
        self._rows.append(row)

    def fetch(self) -> list[RawSupplierRecord]:
        records = []
        for row in self._rows:
            if isinstance(row, RawSupplierRecord):
                records.append(row)
                continue
            record = parse_row(row, {"supplier_id": self._supplier_id})
            if record is not None:
                records.append(record)
        return records


def feeds_from_config(config: Config) -> list[SupplierFeed]:
    """File feeds for every active supplier that has a feed configured."""
    feeds = []
    for supplier in get_active_suppliers(config):
        if not supplier.feed:
            logger.debug(f"Supplier {supplier.id} has no feed configured, skipping")
            continue
        feeds.append(FileSupplierFeed(config.resolve(supplier.feed), supplier.id, supplier.name))
    return feeds


def dedupe(raw_records: Iterable[RawSupplierRecord], existing_keys: Iterable[tuple[str, str]] = ()) -> list[RawSupplierRecord]:
    """
    Drop rows whose (supplier_id, local_id) is already stored or repeated.

    First occurrence in the batch wins.
    """
    seen = set(existing_keys)
    unique = []
    for raw in raw_records:
        key = (raw.supplier_id, raw.local_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(raw)
    return unique


def to_supplier_record(raw: RawSupplierRecord, record_id: Optional[str] = None, now: Optional[datetime] = None) -> SupplierRecord:
    """New PENDING supplier record for an ingested feed row."""
    now = now or utc_now()
    return SupplierRecord(
        id=record_id or str(uuid.uuid4()),
        supplier_id=raw.supplier_id,
        supplier_name=raw.supplier_name,
        supplier_local_id=raw.local_id,
        label=raw.label,
        local_code=raw.local_code,
        country_hint=raw.country_hint,
        country_code_hint=raw.country_code_hint,
        created_at=now,
        updated_at=now,
    )
