"""
Configuration for Taxonomy Match.

Handles taxonomy id namespaces, the supplier directory, and matching thresholds.
Config is declarative JSON - edit the file, not the code.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_CONFIG_PATH = Path(__file__).parent / "taxonomy_config.json"
DEFAULT_DB_PATH = Path("data") / "taxonomy_match.db"


@dataclass
class TaxonomyConfig:
    """Id namespace and catalog for one taxonomy (nationality, country, city...)."""
    name: str
    id_prefix: str             # Namespace for engine-allocated ids (e.g., "ORG_NAT_")
    id_width: int = 5
    seed_prefix: str = "master_"  # Namespace for catalog-seeded ids
    seed_width: int = 3
    catalog: Optional[str] = None  # Catalog file, relative to the config file


@dataclass
class SupplierConfig:
    """One entry of the supplier directory."""
    id: str
    name: str
    feed: Optional[str] = None  # Feed file (CSV, JSON or XLSX)
    active: bool = True


@dataclass
class MatchSettings:
    """Settings for the grouping and matching algorithms."""
    group_threshold: float = 90
    name_weight: float = 0.7
    code_weight: float = 0.3
    code_bonus: int = 10
    auto_map_threshold: int = 95
    suggestion_limit: int = 5


@dataclass
class Config:
    """Full configuration for taxonomy matching."""
    taxonomies: dict[str, TaxonomyConfig] = field(default_factory=dict)
    suppliers: list[SupplierConfig] = field(default_factory=list)
    settings: MatchSettings = field(default_factory=MatchSettings)
    base_dir: Path = field(default_factory=Path.cwd, repr=False)

    def taxonomy(self, name: str) -> TaxonomyConfig:
        """Look up a taxonomy, raising ValueError for unknown names."""
        try:
            return self.taxonomies[name]
        except KeyError:
            known = ", ".join(sorted(self.taxonomies)) or "none"
            raise ValueError(f"Unknown taxonomy '{name}' (configured: {known})") from None

    def resolve(self, relative: str) -> Path:
        """Resolve a path from the config file's directory."""
        path = Path(relative)
        if path.is_absolute():
            return path
        return self.base_dir / path


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to taxonomy_config.json. Falls back to the
            MERIDIAN_CONFIG environment variable, then the bundled default.

    Returns:
        Config object with taxonomies, suppliers, and settings
    """
    if config_path is None:
        config_path = os.environ.get("MERIDIAN_CONFIG") or DEFAULT_CONFIG_PATH

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    taxonomies = {}
    for name, tax_data in data.get("taxonomies", {}).items():
        if "id_prefix" not in tax_data:
            raise ValueError(f"Taxonomy '{name}' is missing id_prefix")
        taxonomies[name] = TaxonomyConfig(
            name=name,
            id_prefix=tax_data["id_prefix"],
            id_width=tax_data.get("id_width", 5),
            seed_prefix=tax_data.get("seed_prefix", "master_"),
            seed_width=tax_data.get("seed_width", 3),
            catalog=tax_data.get("catalog"),
        )

    suppliers = [
        SupplierConfig(
            id=s["id"],
            name=s.get("name", s["id"]),
            feed=s.get("feed"),
            active=s.get("active", True),
        )
        for s in data.get("suppliers", [])
    ]

    settings_data = data.get("settings", {})
    defaults = MatchSettings()
    settings = MatchSettings(
        group_threshold=settings_data.get("group_threshold", defaults.group_threshold),
        name_weight=settings_data.get("name_weight", defaults.name_weight),
        code_weight=settings_data.get("code_weight", defaults.code_weight),
        code_bonus=settings_data.get("code_bonus", defaults.code_bonus),
        auto_map_threshold=settings_data.get("auto_map_threshold", defaults.auto_map_threshold),
        suggestion_limit=settings_data.get("suggestion_limit", defaults.suggestion_limit),
    )

    return Config(
        taxonomies=taxonomies,
        suppliers=suppliers,
        settings=settings,
        base_dir=path.parent,
    )


def get_active_suppliers(config: Config) -> list[SupplierConfig]:
    """Suppliers the directory should currently be fetched from."""
    return [s for s in config.suppliers if s.active]


def default_db_path() -> Path:
    """Database location, overridable with MERIDIAN_DB_PATH."""
    return Path(os.environ.get("MERIDIAN_DB_PATH", str(DEFAULT_DB_PATH)))
