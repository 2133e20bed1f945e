"""
Tests for the match, unmatch, move and suggestion engines.

The engines are pure: they take snapshots and return mutation sets, so
these tests never need a store.

Run with: pytest meridian/taxonomy_match/tests/test_matcher.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import T0, make_record
from meridian.taxonomy_match.errors import (
    RecordNotLinked,
    SameTarget,
    TooFewSelected,
    UnknownMasterId,
    UnknownRecordId,
)
from meridian.taxonomy_match.grouping import group_records
from meridian.taxonomy_match.matcher import (
    auto_map_to_masters,
    auto_match_all,
    build_master,
    commit,
    detect_warnings,
    map_to_master,
    move,
    propose_manual_match,
    suggest_masters,
    unmatch,
)
from meridian.taxonomy_match.models import MasterRecord, RecordStatus

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def masters():
    return {
        "master_051": MasterRecord("master_051", "Egyptian", "EG", "EGY", ["Egypt"]),
        "master_004": MasterRecord("master_004", "American", "US", "USA", ["United States", "USA"]),
        "ORG_NAT_00001": MasterRecord("ORG_NAT_00001", "British", "GB"),
    }


class TestDetectWarnings:
    """Test advisory warnings for a match."""

    def test_multiple_codes_in_first_seen_order(self):
        records = [
            make_record("1", "Egyptian", local_code="EG"),
            make_record("2", "Egypt", supplier_id="iwtx", local_code="EGY"),
            make_record("3", "Egyptian National", supplier_id="sabre", local_code="EG"),
        ]
        assert detect_warnings(records) == ["Multiple codes: EG, EGY"]

    def test_duplicate_suppliers(self):
        records = [
            make_record("1", "Egyptian", supplier_id="ebooking"),
            make_record("2", "Egypt", supplier_id="ebooking"),
        ]
        assert detect_warnings(records) == ["Duplicate suppliers: ebooking"]

    def test_clean(self, egyptian_records):
        assert detect_warnings(egyptian_records) == []


class TestAutoMatch:
    """Test auto-matching whole groups."""

    def test_one_master_per_group(self, egyptian_records, catalog, allocator):
        groups = group_records(egyptian_records, catalog)
        outcome = auto_match_all(groups, allocator, catalog, now=NOW)

        assert outcome.master_ids == ["ORG_NAT_00001"]
        assert outcome.mapped_count == 3
        assert {r.master_id for r in outcome.updated} == {"ORG_NAT_00001"}
        assert all(r.status == RecordStatus.MAPPED for r in outcome.updated)
        assert all(r.confidence == 100 for r in outcome.updated)

    def test_new_master_takes_catalog_identity(self, egyptian_records, catalog, allocator):
        outcome = auto_match_all(group_records(egyptian_records, catalog), allocator, catalog, now=NOW)

        master = outcome.created[0]
        assert master.canonical_name == "Egyptian"
        assert master.primary_code == "EG"
        assert master.standard_code == "EGY"
        assert master.alternate_names == ["Egypt", "Egyptian National"]
        assert master.is_active

    def test_input_snapshots_untouched(self, egyptian_records, catalog, allocator):
        auto_match_all(group_records(egyptian_records, catalog), allocator, catalog, now=NOW)
        assert all(r.status == RecordStatus.PENDING for r in egyptian_records)
        assert all(r.master_id is None for r in egyptian_records)

    def test_singletons_skipped(self, catalog, allocator):
        records = [
            make_record("1", "Egyptian", local_code="EG"),
            make_record("2", "British", local_code="GB"),
        ]
        outcome = auto_match_all(group_records(records, catalog), allocator, catalog)
        assert outcome.updated == []
        assert outcome.created == []
        assert allocator.calls == 0

    def test_mapped_and_review_members_left_alone(self, catalog, allocator):
        records = [
            make_record("1", "Egyptian", local_code="EG", status=RecordStatus.MAPPED, master_id="M9"),
            make_record("2", "Egypt", supplier_id="iwtx", status=RecordStatus.NEEDS_REVIEW),
            make_record("3", "Egyptian National", supplier_id="sabre", local_code="EG"),
        ]
        outcome = auto_match_all(group_records(records, catalog), allocator, catalog)
        # only one PENDING member remains
        assert outcome.updated == []

    def test_rerun_is_a_no_op(self, egyptian_records, catalog, allocator):
        first = auto_match_all(group_records(egyptian_records, catalog), allocator, catalog)
        second = auto_match_all(group_records(first.updated, catalog), allocator, catalog)
        assert second.updated == []
        assert allocator.calls == 1

    def test_warnings_reported(self, catalog, allocator):
        records = [
            make_record("1", "Egyptian", local_code="EG"),
            make_record("2", "Egypt", supplier_id="iwtx", local_code="EGY"),
        ]
        outcome = auto_match_all(group_records(records, catalog), allocator, catalog)
        assert len(outcome.warnings) == 1
        assert outcome.warnings[0].group_key == "Egyptian"
        assert outcome.warnings[0].issues == ["Multiple codes: EG, EGY"]

    def test_distinct_ids_per_group(self, catalog, allocator):
        records = [
            make_record("1", "Egyptian", local_code="EG"),
            make_record("2", "Egypt", supplier_id="iwtx"),
            make_record("3", "British", local_code="GB"),
            make_record("4", "UK", supplier_id="iwtx"),
        ]
        outcome = auto_match_all(group_records(records, catalog), allocator, catalog)
        assert outcome.master_ids == ["ORG_NAT_00001", "ORG_NAT_00002"]
        assert [m.canonical_name for m in outcome.created] == ["Egyptian", "British"]

    def test_timestamps_never_go_backwards(self, catalog, allocator):
        future = T0 + timedelta(days=3650)
        records = [
            make_record("1", "Egyptian", updated_at=future),
            make_record("2", "Egypt", supplier_id="iwtx"),
        ]
        outcome = auto_match_all(group_records(records, catalog), allocator, catalog, now=NOW)
        by_id = {r.id: r for r in outcome.updated}
        assert by_id["1"].updated_at == future
        assert by_id["2"].updated_at == NOW


class TestBuildMaster:
    """Test naming of new masters."""

    def test_without_catalog_uses_first_member(self, egyptian_records):
        master = build_master("ORG_NAT_00001", egyptian_records, now=NOW)
        assert master.canonical_name == "Egyptian"
        assert master.primary_code == "EG"
        assert master.standard_code is None
        assert master.alternate_names == ["Egypt", "Egyptian National"]

    def test_unresolved_members(self, catalog):
        members = [make_record("1", "Martian"), make_record("2", "Martians", supplier_id="iwtx")]
        master = build_master("ORG_NAT_00001", members, catalog, now=NOW)
        assert master.canonical_name == "Martian"
        assert master.primary_code is None


class TestManualMatch:
    """Test propose and commit."""

    def test_proposal_requires_two(self, egyptian_records):
        with pytest.raises(TooFewSelected):
            propose_manual_match(egyptian_records[:1])

    def test_proposal_ignores_repeated_ids(self, egyptian_records):
        with pytest.raises(TooFewSelected):
            propose_manual_match([egyptian_records[0], egyptian_records[0]])

    def test_empty_selection(self):
        with pytest.raises(TooFewSelected) as exc:
            propose_manual_match([])
        assert exc.value.count == 0

    def test_proposal_carries_warnings(self):
        selection = [
            make_record("1", "Egyptian", local_code="EG"),
            make_record("2", "Egypt", local_code="EGY"),
        ]
        proposal = propose_manual_match(selection, group_key="Egyptian")
        assert proposal.member_ids == ["1", "2"]
        assert proposal.warnings == ["Multiple codes: EG, EGY", "Duplicate suppliers: ebooking"]
        assert proposal.target_master_id is None

    def test_commit_only_touches_selection(self, egyptian_records, catalog, allocator):
        records = {r.id: r for r in egyptian_records}
        proposal = propose_manual_match(egyptian_records[:2], group_key="Egyptian")
        outcome = commit(proposal, records, {}, allocator, catalog, scores={"1": 100, "2": 100}, now=NOW)

        assert [r.id for r in outcome.updated] == ["1", "2"]
        assert outcome.master_ids == ["ORG_NAT_00001"]
        assert outcome.created[0].alternate_names == ["Egypt"]
        assert all(r.confidence == 100 for r in outcome.updated)

    def test_commit_to_existing_master(self, egyptian_records, masters, allocator):
        records = {r.id: r for r in egyptian_records}
        proposal = propose_manual_match(egyptian_records, target_master_id="master_051")
        outcome = commit(proposal, records, masters, allocator, now=NOW)

        assert outcome.created == []
        assert allocator.calls == 0
        assert {r.master_id for r in outcome.updated} == {"master_051"}

    def test_commit_unknown_record_allocates_nothing(self, egyptian_records, allocator):
        proposal = propose_manual_match(egyptian_records[:2])
        records = {"1": egyptian_records[0]}
        with pytest.raises(UnknownRecordId):
            commit(proposal, records, {}, allocator)
        assert allocator.calls == 0

    def test_commit_unknown_target(self, egyptian_records, masters, allocator):
        records = {r.id: r for r in egyptian_records}
        proposal = propose_manual_match(egyptian_records, target_master_id="ORG_NAT_99999")
        with pytest.raises(UnknownMasterId):
            commit(proposal, records, masters, allocator)

    def test_commit_rechecks_size(self, egyptian_records, allocator):
        proposal = propose_manual_match(egyptian_records[:2])
        proposal.member_ids = ["1"]
        with pytest.raises(TooFewSelected):
            commit(proposal, {r.id: r for r in egyptian_records}, {}, allocator)


class TestUnmatch:
    """Test reverting records to pending."""

    def test_keeps_master_id(self):
        records = [
            make_record("1", "Egyptian", status=RecordStatus.MAPPED, master_id="ORG_NAT_00001", confidence=100),
        ]
        outcome = unmatch(records, now=NOW)
        reverted = outcome.updated[0]
        assert reverted.status == RecordStatus.PENDING
        assert reverted.master_id == "ORG_NAT_00001"
        assert outcome.created == []

    def test_rejects_unlinked_before_any_change(self):
        records = [
            make_record("1", "Egyptian", status=RecordStatus.MAPPED, master_id="ORG_NAT_00001"),
            make_record("2", "Egypt"),
        ]
        with pytest.raises(RecordNotLinked) as exc:
            unmatch(records)
        assert exc.value.record_id == "2"


class TestMove:
    """Test reassigning a record."""

    def test_move(self, masters):
        record = make_record("1", "Egyptian", status=RecordStatus.MAPPED, master_id="ORG_NAT_00001", confidence=93)
        moved = move(record, "master_051", masters, now=NOW)
        assert moved.master_id == "master_051"
        assert moved.status == RecordStatus.MAPPED
        assert moved.confidence is None
        assert record.master_id == "ORG_NAT_00001"

    def test_move_pending_record(self, masters):
        moved = move(make_record("1", "Egyptian"), "master_051", masters)
        assert moved.status == RecordStatus.MAPPED

    def test_same_target(self, masters):
        record = make_record("1", "Egyptian", status=RecordStatus.MAPPED, master_id="master_051")
        with pytest.raises(SameTarget):
            move(record, "master_051", masters)

    def test_unknown_target(self, masters):
        record = make_record("1", "Egyptian", status=RecordStatus.MAPPED, master_id="master_051")
        with pytest.raises(UnknownMasterId):
            move(record, "ORG_NAT_99999", masters)


class TestMapToMaster:
    """Test linking one record to a chosen master."""

    def test_relink_after_unmatch(self, masters):
        record = make_record("1", "Egyptian", master_id="master_051")
        mapped = map_to_master(record, "master_051", masters, confidence=100)
        assert mapped.status == RecordStatus.MAPPED
        assert mapped.confidence == 100

    def test_already_mapped(self, masters):
        record = make_record("1", "Egyptian", status=RecordStatus.MAPPED, master_id="master_051")
        with pytest.raises(SameTarget):
            map_to_master(record, "master_051", masters)

    def test_unknown(self, masters):
        with pytest.raises(UnknownMasterId):
            map_to_master(make_record("1", "Egyptian"), "nope", masters)


class TestSuggestions:
    """Test ranking masters for one record."""

    def test_best_first(self, masters):
        record = make_record("1", "Egypt")
        suggestions = suggest_masters(record, masters.values())
        assert suggestions[0].master.id == "master_051"
        # alternate name "Egypt" is exact
        assert suggestions[0].confidence == 100

    def test_code_bonus(self, masters):
        record = make_record("1", "Egyptian Natl", country_code_hint="EG")
        best = suggest_masters(record, masters.values(), limit=1)[0]
        assert best.master.id == "master_051"
        assert best.confidence == 100
        assert best.code_match

    def test_inactive_masters_skipped(self, masters):
        masters["master_051"].is_active = False
        suggestions = suggest_masters(make_record("1", "Egypt"), masters.values())
        assert "master_051" not in [s.master.id for s in suggestions]

    def test_limit(self, masters):
        assert len(suggest_masters(make_record("1", "Egypt"), masters.values(), limit=2)) == 2

    def test_equal_confidence_keeps_order(self):
        masters = [MasterRecord("A", "Zed"), MasterRecord("B", "Zed")]
        suggestions = suggest_masters(make_record("1", "Zed"), masters)
        assert [s.master.id for s in suggestions] == ["A", "B"]


class TestAutoMap:
    """Test mapping pending records onto existing masters."""

    def test_maps_above_threshold(self, masters):
        records = [
            make_record("1", "Egypt"),
            make_record("2", "Martian"),
            make_record("3", "USA", status=RecordStatus.MAPPED, master_id="X"),
        ]
        outcome = auto_map_to_masters(records, list(masters.values()), threshold=95, now=NOW)
        assert [r.id for r in outcome.updated] == ["1"]
        assert outcome.updated[0].master_id == "master_051"
        assert outcome.updated[0].confidence == 100
        assert outcome.master_ids == ["master_051"]

    def test_no_masters(self):
        outcome = auto_map_to_masters([make_record("1", "Egypt")], [])
        assert outcome.updated == []
