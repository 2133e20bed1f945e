"""
Data models for Taxonomy Match.

All structured data uses dataclasses for type hints, __eq__, and __repr__.
Timestamps are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class RecordStatus(Enum):
    """
    Mapping state of a supplier record.

    PENDING -> MAPPED via auto or manual match, MAPPED -> PENDING via unmatch,
    MAPPED -> MAPPED via move. NEEDS_REVIEW is only cleared by a human action.
    """
    PENDING = "pending"
    MAPPED = "mapped"
    NEEDS_REVIEW = "review"


class GroupingRule(Enum):
    """Which step of the grouping cascade placed a record in its group."""
    LINKAGE = "linkage"        # shares a master id with a placed record
    CATALOG = "catalog"        # resolves to the same reference catalog entry
    SIMILARITY = "similarity"  # weighted name/code similarity above threshold
    LITERAL = "literal"        # started (or joined) a group by literal label


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def advance(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return a timestamp that never goes backwards relative to `previous`."""
    now = now or utc_now()
    if previous is not None and previous > now:
        return previous
    return now


@dataclass
class SupplierRecord:
    """
    One taxonomy value as reported by one supplier.

    `master_id` is a weak reference to a MasterRecord; only the match,
    unmatch and move operations change it.
    """
    id: str
    supplier_id: str
    supplier_name: str
    supplier_local_id: str       # Code the supplier uses internally
    label: str                   # Display name (e.g., "Egyptian National")
    local_code: Optional[str] = None
    country_hint: Optional[str] = None
    country_code_hint: Optional[str] = None
    master_id: Optional[str] = None
    status: RecordStatus = RecordStatus.PENDING
    confidence: Optional[int] = None  # 0-100, set only by matching
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.supplier_id, self.supplier_local_id)

    def evolve(self, **changes) -> "SupplierRecord":
        """Copy with changes; the original snapshot is left untouched."""
        return replace(self, **changes)


@dataclass
class MasterRecord:
    """One canonical, wholesaler-owned concept."""
    id: str
    canonical_name: str
    primary_code: Optional[str] = None
    standard_code: Optional[str] = None
    alternate_names: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class MasterStats:
    """Derived view of a master record, computed on read."""
    master: MasterRecord
    mapped_count: int = 0
    supplier_set: list[str] = field(default_factory=list)


@dataclass
class RawSupplierRecord:
    """A feed row as yielded by the supplier directory, before ingestion."""
    supplier_id: str
    supplier_name: str
    local_id: str
    label: str
    local_code: Optional[str] = None
    country_hint: Optional[str] = None
    country_code_hint: Optional[str] = None


@dataclass
class Group:
    """
    Transient cluster of supplier records believed to denote one concept.

    Never persisted. `key` is for display only and depends on which record
    was seen first.
    """
    key: str
    members: list[SupplierRecord] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)
    rules: dict[str, GroupingRule] = field(default_factory=dict)

    @property
    def first(self) -> SupplierRecord:
        return self.members[0]

    def add(self, record: SupplierRecord, score: int, rule: GroupingRule):
        self.members.append(record)
        self.scores[record.id] = score
        self.rules[record.id] = rule

    def with_status(self, status: RecordStatus) -> list[SupplierRecord]:
        return [r for r in self.members if r.status == status]

    def master_ids(self) -> list[str]:
        """Distinct master ids among MAPPED members, first-seen order."""
        ids = [r.master_id for r in self.members if r.status == RecordStatus.MAPPED and r.master_id]
        return list(dict.fromkeys(ids))


@dataclass
class MatchProposal:
    """
    A match awaiting confirmation.

    target_master_id of None means a new master id is allocated on commit.
    """
    member_ids: list[str]
    warnings: list[str] = field(default_factory=list)
    target_master_id: Optional[str] = None
    group_key: Optional[str] = None


@dataclass
class GroupWarning:
    """Advisory issues raised while matching one group."""
    group_key: str
    record_ids: list[str]
    issues: list[str]


@dataclass
class MatchOutcome:
    """
    Mutation set produced by an engine operation.

    The engines never write to a store; the caller applies `updated` and
    `created` through its single write path.
    """
    updated: list[SupplierRecord] = field(default_factory=list)
    created: list[MasterRecord] = field(default_factory=list)
    warnings: list[GroupWarning] = field(default_factory=list)
    master_ids: list[str] = field(default_factory=list)

    @property
    def mapped_count(self) -> int:
        return sum(1 for r in self.updated if r.status == RecordStatus.MAPPED)


@dataclass
class MasterSuggestion:
    """A candidate master for a single record, best first."""
    master: MasterRecord
    confidence: int
    code_match: bool = False


@dataclass
class BatchEntry:
    """Result of one selection within a batch manual match."""
    group_key: str
    record_ids: list[str]
    master_id: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
