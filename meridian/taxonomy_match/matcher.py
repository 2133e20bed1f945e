"""
Taxonomy Matcher - Match, unmatch, and move engines.

Every operation takes snapshots and returns a mutation set (MatchOutcome or
an evolved record); nothing here touches a store. The caller applies results
through its single write path.

State machine per supplier record:
| From         | Operation          | To      | master_id            |
|--------------|--------------------|---------|----------------------|
| PENDING      | auto / manual match| MAPPED  | new or chosen master |
| MAPPED       | unmatch            | PENDING | kept                 |
| any          | move               | MAPPED  | chosen master        |
| NEEDS_REVIEW | auto match         | -       | never auto-resolved  |
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, Optional

from .catalog import ReferenceCatalog
from .errors import RecordNotLinked, SameTarget, TooFewSelected, UnknownMasterId, UnknownRecordId
from .models import (
    Group,
    GroupWarning,
    MasterRecord,
    MasterSuggestion,
    MatchOutcome,
    MatchProposal,
    RecordStatus,
    SupplierRecord,
    advance,
    utc_now,
)
from .similarity import codes_match, score, with_code_bonus

logger = logging.getLogger(__name__)

MIN_MATCH_SIZE = 2

IdAllocator = Callable[[], str]


def detect_warnings(records: list[SupplierRecord]) -> list[str]:
    """
    Advisory issues for a set of records about to be matched together.

    - more than one distinct local code
    - the same supplier contributing more than one record
    """
    warnings = []

    codes = list(dict.fromkeys(r.local_code for r in records if r.local_code))
    if len(codes) > 1:
        warnings.append(f"Multiple codes: {', '.join(codes)}")

    supplier_counts = Counter(r.supplier_id for r in records)
    duplicates = [s for s, count in supplier_counts.items() if count > 1]
    if duplicates:
        warnings.append(f"Duplicate suppliers: {', '.join(duplicates)}")

    return warnings


def build_master(
    master_id: str,
    members: list[SupplierRecord],
    catalog: Optional[ReferenceCatalog] = None,
    now: Optional[datetime] = None,
) -> MasterRecord:
    """
    Describe a newly allocated master from the records it was created for.

    Catalog data wins when any member resolves to an entry; otherwise the
    first member's label and code are used.
    """
    now = now or utc_now()
    entry = None
    if catalog is not None:
        entry = next((e for e in (catalog.resolve(r) for r in members) if e is not None), None)

    if entry is not None:
        name = entry.canonical_name
        primary = entry.primary_code
        standard = entry.standard_code or None
    else:
        name = members[0].label
        primary = next((r.local_code for r in members if r.local_code), None)
        standard = None

    alternates = [r.label for r in members if r.label.strip().lower() != name.strip().lower()]
    return MasterRecord(
        id=master_id,
        canonical_name=name,
        primary_code=primary,
        standard_code=standard,
        alternate_names=list(dict.fromkeys(alternates)),
        created_at=now,
        updated_at=now,
    )


def _link(record: SupplierRecord, master_id: str, confidence: Optional[int], now: datetime) -> SupplierRecord:
    return record.evolve(
        master_id=master_id,
        status=RecordStatus.MAPPED,
        confidence=confidence,
        updated_at=advance(record.updated_at, now),
    )


def auto_match_all(
    groups: dict[str, Group] | Iterable[Group],
    allocate_id: IdAllocator,
    catalog: Optional[ReferenceCatalog] = None,
    now: Optional[datetime] = None,
) -> MatchOutcome:
    """
    Give every group with two or more PENDING members its own new master.

    Already MAPPED and NEEDS_REVIEW members are left alone, so running this
    again only affects records that are still PENDING.

    Args:
        groups: Output of group_records (or any iterable of groups)
        allocate_id: Returns a fresh master id per call
        catalog: Used to name the new masters
        now: Timestamp for the update (defaults to current UTC time)

    Returns:
        MatchOutcome with updated records, created masters, and warnings
    """
    now = now or utc_now()
    outcome = MatchOutcome()
    group_list = groups.values() if isinstance(groups, dict) else groups

    for group in group_list:
        pending = group.with_status(RecordStatus.PENDING)
        if len(pending) < MIN_MATCH_SIZE:
            continue

        master_id = allocate_id()
        outcome.created.append(build_master(master_id, pending, catalog, now))
        outcome.master_ids.append(master_id)
        for record in pending:
            outcome.updated.append(_link(record, master_id, group.scores.get(record.id), now))

        issues = detect_warnings(pending)
        if issues:
            outcome.warnings.append(GroupWarning(
                group_key=group.key,
                record_ids=[r.id for r in pending],
                issues=issues,
            ))
            logger.warning(f"Auto-match of group {group.key!r} into {master_id}: {'; '.join(issues)}")

    logger.info(f"Auto-matched {outcome.mapped_count} records into {len(outcome.master_ids)} new masters")
    return outcome


def propose_manual_match(
    selection: list[SupplierRecord],
    group_key: Optional[str] = None,
    target_master_id: Optional[str] = None,
) -> MatchProposal:
    """
    Validate a human selection and collect its warnings for confirmation.

    Raises:
        TooFewSelected: fewer than two distinct records were selected
    """
    member_ids = list(dict.fromkeys(r.id for r in selection))
    if len(member_ids) < MIN_MATCH_SIZE:
        raise TooFewSelected(len(member_ids), MIN_MATCH_SIZE)

    return MatchProposal(
        member_ids=member_ids,
        warnings=detect_warnings(selection),
        target_master_id=target_master_id,
        group_key=group_key,
    )


def commit(
    proposal: MatchProposal,
    records: dict[str, SupplierRecord],
    masters: dict[str, MasterRecord],
    allocate_id: IdAllocator,
    catalog: Optional[ReferenceCatalog] = None,
    scores: Optional[dict[str, int]] = None,
    now: Optional[datetime] = None,
) -> MatchOutcome:
    """
    Apply a confirmed proposal to exactly the selected records.

    Unselected members of the same group are not touched. Everything is
    validated before an id is allocated.

    Raises:
        TooFewSelected: the proposal has fewer than two members
        UnknownRecordId: a member id is not in `records`
        UnknownMasterId: an existing target master is not in `masters`
    """
    if len(set(proposal.member_ids)) < MIN_MATCH_SIZE:
        raise TooFewSelected(len(set(proposal.member_ids)), MIN_MATCH_SIZE)

    members = []
    for record_id in proposal.member_ids:
        record = records.get(record_id)
        if record is None:
            raise UnknownRecordId(record_id)
        members.append(record)

    if proposal.target_master_id is not None and proposal.target_master_id not in masters:
        raise UnknownMasterId(proposal.target_master_id)

    now = now or utc_now()
    scores = scores or {}
    outcome = MatchOutcome()

    if proposal.target_master_id is None:
        master_id = allocate_id()
        outcome.created.append(build_master(master_id, members, catalog, now))
    else:
        master_id = proposal.target_master_id
    outcome.master_ids.append(master_id)

    for record in members:
        outcome.updated.append(_link(record, master_id, scores.get(record.id), now))

    if proposal.warnings:
        outcome.warnings.append(GroupWarning(
            group_key=proposal.group_key or master_id,
            record_ids=list(proposal.member_ids),
            issues=list(proposal.warnings),
        ))

    logger.info(f"Matched {len(members)} records into {master_id}")
    return outcome


def unmatch(records: list[SupplierRecord], now: Optional[datetime] = None) -> MatchOutcome:
    """
    Revert records to PENDING while keeping their master id.

    The master record is never touched, even if nothing maps to it any more,
    so a later re-match can reuse the id.

    Raises:
        RecordNotLinked: a record has no master id (exclude those first)
    """
    now = now or utc_now()
    outcome = MatchOutcome()
    for record in records:
        if not record.master_id:
            raise RecordNotLinked(record.id)
    for record in records:
        outcome.updated.append(record.evolve(
            status=RecordStatus.PENDING,
            updated_at=advance(record.updated_at, now),
        ))
    logger.info(f"Unmatched {len(outcome.updated)} records")
    return outcome


def move(
    record: SupplierRecord,
    target_master_id: str,
    masters: dict[str, MasterRecord],
    now: Optional[datetime] = None,
) -> SupplierRecord:
    """
    Reassign one record to a different, existing master.

    Moves are human assertions, so any automatic confidence is cleared.

    Raises:
        SameTarget: the record already points at `target_master_id`
        UnknownMasterId: the target does not exist
    """
    if target_master_id == record.master_id:
        raise SameTarget(record.id, target_master_id)
    if target_master_id not in masters:
        raise UnknownMasterId(target_master_id)

    moved = _link(record, target_master_id, None, now or utc_now())
    logger.info(f"Moved {record.id} from {record.master_id} to {target_master_id}")
    return moved


def map_to_master(
    record: SupplierRecord,
    master_id: str,
    masters: dict[str, MasterRecord],
    confidence: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SupplierRecord:
    """
    Link one record to a master picked from the suggestion list.

    Unlike move, a PENDING record may be re-linked to the master it kept
    after an unmatch.

    Raises:
        SameTarget: the record is already MAPPED to `master_id`
        UnknownMasterId: the master does not exist
    """
    if record.status == RecordStatus.MAPPED and record.master_id == master_id:
        raise SameTarget(record.id, master_id)
    if master_id not in masters:
        raise UnknownMasterId(master_id)
    return _link(record, master_id, confidence, now or utc_now())


def suggest_masters(
    record: SupplierRecord,
    masters: Iterable[MasterRecord],
    code_bonus: int = 10,
    limit: Optional[int] = None,
) -> list[MasterSuggestion]:
    """
    Rank active masters for a single record.

    Confidence is the best similarity against the canonical name or any
    alternate name, plus `code_bonus` when the record's country code equals
    the master's primary code.
    """
    suggestions = []
    for master in masters:
        if not master.is_active:
            continue
        best = max(
            [score(record.label, master.canonical_name)]
            + [score(record.label, alt) for alt in master.alternate_names]
        )
        matched = codes_match(record.country_code_hint, master.primary_code)
        confidence = with_code_bonus(best, record.country_code_hint, master.primary_code, code_bonus)
        suggestions.append(MasterSuggestion(master=master, confidence=confidence, code_match=matched))

    # Stable sort keeps store order among equal confidences
    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    if limit is not None:
        return suggestions[:limit]
    return suggestions


def auto_map_to_masters(
    records: list[SupplierRecord],
    masters: list[MasterRecord],
    threshold: int = 95,
    code_bonus: int = 10,
    now: Optional[datetime] = None,
) -> MatchOutcome:
    """
    Map each PENDING record straight onto its best existing master.

    Only suggestions at or above `threshold` are applied. MAPPED and
    NEEDS_REVIEW records are left alone.
    """
    now = now or utc_now()
    outcome = MatchOutcome()
    for record in records:
        if record.status != RecordStatus.PENDING:
            continue
        suggestions = suggest_masters(record, masters, code_bonus=code_bonus, limit=1)
        if not suggestions or suggestions[0].confidence < threshold:
            continue
        best = suggestions[0]
        outcome.updated.append(_link(record, best.master.id, best.confidence, now))
        if best.master.id not in outcome.master_ids:
            outcome.master_ids.append(best.master.id)

    logger.info(f"Mapped {outcome.mapped_count} records onto existing masters")
    return outcome
