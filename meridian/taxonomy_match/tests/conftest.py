"""
Shared fixtures for the Taxonomy Match test suite.

Provides:
- The bundled reference catalog and default config
- A record factory with sensible defaults
- The three-supplier Egyptian scenario
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from meridian.taxonomy_match.catalog import load_catalog
from meridian.taxonomy_match.config import MatchSettings, TaxonomyConfig, load_config
from meridian.taxonomy_match.models import RecordStatus, SupplierRecord

PACKAGE_DIR = Path(__file__).parent.parent
FIXTURES_DIR = Path(__file__).parent / "fixtures"
CATALOG_PATH = PACKAGE_DIR / "reference_catalog.json"
CONFIG_PATH = PACKAGE_DIR / "taxonomy_config.json"

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_record(
    record_id: str,
    label: str,
    supplier_id: str = "ebooking",
    local_code: str | None = None,
    status: RecordStatus = RecordStatus.PENDING,
    master_id: str | None = None,
    country_code_hint: str | None = None,
    **kwargs,
) -> SupplierRecord:
    """Build a supplier record with test defaults."""
    return SupplierRecord(
        id=record_id,
        supplier_id=supplier_id,
        supplier_name=kwargs.pop("supplier_name", supplier_id.title()),
        supplier_local_id=kwargs.pop("supplier_local_id", f"{supplier_id}_{record_id}"),
        label=label,
        local_code=local_code,
        country_code_hint=country_code_hint,
        status=status,
        master_id=master_id,
        created_at=kwargs.pop("created_at", T0),
        updated_at=kwargs.pop("updated_at", T0),
        **kwargs,
    )


@pytest.fixture(scope="session")
def catalog():
    return load_catalog(CATALOG_PATH)


@pytest.fixture
def config():
    return load_config(CONFIG_PATH)


@pytest.fixture
def settings():
    return MatchSettings()


@pytest.fixture
def nationality():
    return TaxonomyConfig(name="nationality", id_prefix="ORG_NAT_", id_width=5)


@pytest.fixture
def egyptian_records():
    """Three suppliers labelling the same nationality differently."""
    return [
        make_record("1", "Egyptian", supplier_id="supplierA", local_code="EG"),
        make_record("2", "Egypt", supplier_id="supplierB", local_code="EG"),
        make_record("3", "Egyptian National", supplier_id="supplierC", local_code="EG"),
    ]


class Allocator:
    """Deterministic id allocator that records how often it was called."""

    def __init__(self, prefix: str = "ORG_NAT_"):
        self.prefix = prefix
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return f"{self.prefix}{self.calls:05d}"


@pytest.fixture
def allocator():
    return Allocator()
