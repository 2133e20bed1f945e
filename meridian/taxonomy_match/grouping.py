"""
Grouping Engine - Partition supplier records into candidate groups.

Single pass over the records; each record walks a priority cascade and the
first rule that yields a group wins:

| Step | Rule        | Joins when                                           | Score |
|------|-------------|------------------------------------------------------|-------|
| 1    | LINKAGE     | a placed record shares its master id                 | 100   |
| 2    | CATALOG     | group's first member resolves to the same entry      | 100   |
| 3    | SIMILARITY  | weighted name/code score vs first member >= threshold| score |
| 4    | LITERAL     | otherwise, group keyed by the literal label          | 100   |

Group keys are display-only: which label names a group depends on which
record arrives first. Membership is stable for a fixed input order.
"""

import logging
from typing import Optional

from .catalog import ReferenceCatalog
from .config import MatchSettings
from .models import Group, GroupingRule, RecordStatus, SupplierRecord
from .similarity import weighted_score

logger = logging.getLogger(__name__)

# Placement score for rules that are not similarity-based
CERTAIN_SCORE = 100


def group_records(
    records: list[SupplierRecord],
    catalog: Optional[ReferenceCatalog] = None,
    settings: Optional[MatchSettings] = None,
) -> dict[str, Group]:
    """
    Group supplier records by the concept they appear to denote.

    Args:
        records: Snapshot of supplier records, in arrival order
        catalog: Reference catalog for code cross-matching (optional)
        settings: Weights and threshold for similarity grouping

    Returns:
        Dict of group key -> Group, in the order groups were started
    """
    settings = settings or MatchSettings()
    groups: dict[str, Group] = {}
    # master id -> key of the group holding it
    linked: dict[str, str] = {}
    # group key -> catalog primary code of its first member (None if unresolved)
    group_codes: dict[str, Optional[str]] = {}

    for record in records:
        placed = (
            _by_linkage(record, linked)
            or _by_catalog(record, catalog, group_codes)
            or _by_similarity(record, groups, settings)
        )

        if placed is None:
            key, score, rule = record.label, CERTAIN_SCORE, GroupingRule.LITERAL
        else:
            key, score, rule = placed

        group = groups.get(key)
        if group is None:
            group = Group(key=key)
            groups[key] = group
            group_codes[key] = _catalog_code(record, catalog)
        group.add(record, score, rule)

        if record.master_id:
            linked.setdefault(record.master_id, key)

        logger.debug(f"Placed {record.id} ({record.label!r}) in {key!r} via {rule.value} ({score})")

    return groups


def _by_linkage(record: SupplierRecord, linked: dict[str, str]):
    if record.master_id and record.master_id in linked:
        return linked[record.master_id], CERTAIN_SCORE, GroupingRule.LINKAGE
    return None


def _catalog_code(record: SupplierRecord, catalog: Optional[ReferenceCatalog]) -> Optional[str]:
    if catalog is None:
        return None
    entry = catalog.resolve(record)
    return entry.primary_code if entry else None


def _by_catalog(record: SupplierRecord, catalog: Optional[ReferenceCatalog], group_codes: dict[str, Optional[str]]):
    code = _catalog_code(record, catalog)
    if code is None:
        return None
    for key, group_code in group_codes.items():
        if group_code == code:
            return key, CERTAIN_SCORE, GroupingRule.CATALOG
    return None


def _by_similarity(record: SupplierRecord, groups: dict[str, Group], settings: MatchSettings):
    best_key = None
    best_score = 0.0
    for key, group in groups.items():
        first = group.first
        overall = weighted_score(
            record.label, record.local_code,
            first.label, first.local_code,
            name_weight=settings.name_weight,
            code_weight=settings.code_weight,
        )
        # Ties go to the group started last
        if overall >= settings.group_threshold and overall >= best_score:
            best_key, best_score = key, overall
    if best_key is None:
        return None
    return best_key, round(best_score), GroupingRule.SIMILARITY


def group_conflicts(group: Group) -> list[str]:
    """Advisory issues visible on a group before anything is matched."""
    issues = []
    master_ids = group.master_ids()
    if len(master_ids) > 1:
        issues.append(f"Conflicting master ids: {', '.join(master_ids)}")
    return issues


def filter_records(
    records: list[SupplierRecord],
    search: Optional[str] = None,
    status: Optional[RecordStatus] = None,
    supplier_id: Optional[str] = None,
) -> list[SupplierRecord]:
    """
    Narrow the record set before grouping.

    `search` matches the label or the supplier name, case-insensitively.
    """
    term = (search or "").strip().lower()
    results = []
    for record in records:
        if term and term not in record.label.lower() and term not in record.supplier_name.lower():
            continue
        if status is not None and record.status != status:
            continue
        if supplier_id is not None and record.supplier_id != supplier_id:
            continue
        results.append(record)
    return results
