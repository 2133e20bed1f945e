# Taxonomy Match: supplier taxonomy reconciliation
# Siloed module - storage and transport stay outside the engines

from .models import (
    RecordStatus,
    GroupingRule,
    SupplierRecord,
    MasterRecord,
    MasterStats,
    RawSupplierRecord,
    Group,
    MatchProposal,
    MatchOutcome,
    GroupWarning,
    MasterSuggestion,
    BatchEntry,
)
from .errors import MatchError, TooFewSelected, SameTarget, UnknownMasterId, UnknownRecordId, RecordNotLinked
from .config import load_config, get_active_suppliers, Config, MatchSettings, TaxonomyConfig
from .catalog import load_catalog, build_catalog, seed_masters, CatalogEntry, ReferenceCatalog
from .similarity import score, weighted_score, with_code_bonus
from .grouping import group_records, filter_records, group_conflicts
from .ids import next_master_id, MasterIdSequence
from .matcher import (
    detect_warnings,
    auto_match_all,
    propose_manual_match,
    commit,
    unmatch,
    move,
    map_to_master,
    suggest_masters,
    auto_map_to_masters,
)
from .store import RecordStore, InMemoryRecordStore, SqliteRecordStore
from .feeds import SupplierFeed, FileSupplierFeed, InMemorySupplierFeed, feeds_from_config
from .service import MappingService, summarize
from .report import format_groups, format_summary, export_csv

__version__ = "1.0.0"

__all__ = [
    # Models
    "RecordStatus",
    "GroupingRule",
    "SupplierRecord",
    "MasterRecord",
    "MasterStats",
    "RawSupplierRecord",
    "Group",
    "MatchProposal",
    "MatchOutcome",
    "GroupWarning",
    "MasterSuggestion",
    "BatchEntry",
    # Errors
    "MatchError",
    "TooFewSelected",
    "SameTarget",
    "UnknownMasterId",
    "UnknownRecordId",
    "RecordNotLinked",
    # Config
    "Config",
    "MatchSettings",
    "TaxonomyConfig",
    "load_config",
    "get_active_suppliers",
    # Catalog
    "CatalogEntry",
    "ReferenceCatalog",
    "load_catalog",
    "build_catalog",
    "seed_masters",
    # Scoring and grouping
    "score",
    "weighted_score",
    "with_code_bonus",
    "group_records",
    "filter_records",
    "group_conflicts",
    # Ids
    "next_master_id",
    "MasterIdSequence",
    # Engines
    "detect_warnings",
    "auto_match_all",
    "propose_manual_match",
    "commit",
    "unmatch",
    "move",
    "map_to_master",
    "suggest_masters",
    "auto_map_to_masters",
    # Persistence and feeds
    "RecordStore",
    "InMemoryRecordStore",
    "SqliteRecordStore",
    "SupplierFeed",
    "FileSupplierFeed",
    "InMemorySupplierFeed",
    "feeds_from_config",
    # Service and report
    "MappingService",
    "summarize",
    "format_groups",
    "format_summary",
    "export_csv",
]
