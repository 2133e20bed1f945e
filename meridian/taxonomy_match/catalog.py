"""
Reference Catalog - Authoritative seed list of canonical concepts.

Instead of scanning every catalog entry for every supplier record, we build
lookup dictionaries once:
- by_name: lowercased canonical/country/alternate name -> entry position
- by_code: lowercased primary/standard code -> entry position

When a record hits several entries (name points at one, code at another),
the entry listed first in the catalog wins.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .models import MasterRecord, SupplierRecord

logger = logging.getLogger(__name__)


@dataclass
class CatalogEntry:
    """One canonical concept (e.g., an ISO-3166 nationality)."""
    canonical_name: str
    primary_code: str           # e.g. ISO alpha-2 "EG"
    standard_code: str = ""     # e.g. ISO alpha-3 "EGY"
    country_name: str = ""
    alternate_names: list[str] = field(default_factory=list)


@dataclass
class ReferenceCatalog:
    """
    Indexed reference catalog.

    Attributes:
        entries: Catalog entries in published order
        by_name: Lowercased name variant -> first entry position
        by_code: Lowercased code -> first entry position
        taxonomy: Which taxonomy the catalog seeds
        version: Published version string; reloads require a restart
    """
    entries: list[CatalogEntry] = field(default_factory=list)
    by_name: dict[str, int] = field(default_factory=dict)
    by_code: dict[str, int] = field(default_factory=dict)
    taxonomy: str = ""
    version: str = ""

    def __len__(self) -> int:
        return len(self.entries)

    def lookup(self, label: Optional[str] = None, code: Optional[str] = None) -> Optional[CatalogEntry]:
        """Resolve a label and/or code to a catalog entry."""
        hits = []
        if label:
            pos = self.by_name.get(label.strip().lower())
            if pos is not None:
                hits.append(pos)
        if code:
            pos = self.by_code.get(code.strip().lower())
            if pos is not None:
                hits.append(pos)
        if not hits:
            return None
        return self.entries[min(hits)]

    def resolve(self, record: SupplierRecord) -> Optional[CatalogEntry]:
        """Resolve a supplier record by its label and local code."""
        return self.lookup(record.label, record.local_code)


def build_catalog(entries: list[CatalogEntry], taxonomy: str = "", version: str = "") -> ReferenceCatalog:
    """
    Build lookup index from catalog entries.

    Args:
        entries: Entries in published order
        taxonomy: Taxonomy name
        version: Catalog version

    Returns:
        ReferenceCatalog with name and code lookups
    """
    catalog = ReferenceCatalog(taxonomy=taxonomy, version=version)

    for entry in entries:
        pos = len(catalog.entries)
        catalog.entries.append(entry)

        # First entry wins for duplicate names/codes
        for name in [entry.canonical_name, entry.country_name, *entry.alternate_names]:
            if name:
                catalog.by_name.setdefault(name.strip().lower(), pos)
        for code in (entry.primary_code, entry.standard_code):
            if code:
                catalog.by_code.setdefault(code.strip().lower(), pos)

    return catalog


def load_catalog(catalog_path: str | Path) -> ReferenceCatalog:
    """
    Load a reference catalog from JSON.

    Expected format:
        {"taxonomy": "nationality", "version": "...",
         "entries": [{"canonical_name": "Egyptian", "primary_code": "EG", ...}]}
    """
    path = Path(catalog_path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    entries = []
    for row in data.get("entries", []):
        name = row.get("canonical_name")
        code = row.get("primary_code")
        if not name or not code:
            raise ValueError(f"Catalog entry missing canonical_name or primary_code in {path}: {row}")
        entries.append(CatalogEntry(
            canonical_name=name,
            primary_code=code,
            standard_code=row.get("standard_code", ""),
            country_name=row.get("country_name", ""),
            alternate_names=list(row.get("alternate_names", [])),
        ))

    catalog = build_catalog(entries, taxonomy=data.get("taxonomy", ""), version=data.get("version", ""))
    logger.info(f"Loaded {len(catalog)} catalog entries ({catalog.taxonomy} {catalog.version}) from {path}")
    return catalog


def seed_masters(catalog: ReferenceCatalog, prefix: str = "master_", width: int = 3) -> list[MasterRecord]:
    """One active master record per catalog entry, numbered in catalog order."""
    masters = []
    for pos, entry in enumerate(catalog.entries, start=1):
        alternates = [entry.country_name, *entry.alternate_names] if entry.country_name else list(entry.alternate_names)
        masters.append(MasterRecord(
            id=f"{prefix}{pos:0{width}d}",
            canonical_name=entry.canonical_name,
            primary_code=entry.primary_code,
            standard_code=entry.standard_code or None,
            alternate_names=list(dict.fromkeys(a for a in alternates if a)),
        ))
    return masters
