"""
Tests for the command line interface.

Run with: pytest meridian/taxonomy_match/tests/test_cli.py -v
"""

import csv

import pytest

from conftest import FIXTURES_DIR
from meridian.taxonomy_match.__main__ import main
from meridian.taxonomy_match.models import RecordStatus
from meridian.taxonomy_match.store import SqliteRecordStore

CONFIG = FIXTURES_DIR / "test_config.json"
CSV_FEED = FIXTURES_DIR / "supplier_feed.csv"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "taxonomy.db"


@pytest.fixture
def cli(db_path, capsys):
    """Run the CLI against a scratch database and return (exit code, stdout, stderr)."""
    def run(*args):
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(CONFIG), "--db", str(db_path), *args])
        captured = capsys.readouterr()
        return exc.value.code, captured.out, captured.err
    return run


def record_ids(db_path, label=None):
    store = SqliteRecordStore(db_path)
    try:
        return [r.id for r in store.list_records() if label is None or r.label == label]
    finally:
        store.close()


class TestCli:
    """End-to-end command runs."""

    def test_seed(self, cli):
        code, out, _ = cli("seed")
        assert code == 0
        assert "Seeded 165 master records" in out
        assert "Seeded 0 master records" in cli("seed")[1]

    def test_ingest_and_auto_match(self, cli):
        code, out, _ = cli("ingest", str(CSV_FEED))
        assert code == 0
        assert "Added 6 records, skipped 0 duplicates" in out

        code, out, _ = cli("groups")
        assert "GROUP: Egyptian  (3 records, 3 pending)" in out

        code, out, _ = cli("auto-match")
        assert code == 0
        assert "Mapped 5 records into 2 new masters" in out
        assert "WARNING [Egyptian]: Multiple codes: EG, EGY" in out

        code, out, _ = cli("stats", "--master", "ORG_NAT_00001")
        assert "ORG_NAT_00001 Egyptian: 3 mapped" in out

    def test_ingest_all_from_config(self, cli):
        code, out, _ = cli("ingest", "--all")
        assert code == 0
        assert "Added 3 records" in out

    def test_ingest_nothing(self, cli):
        code, _, err = cli("ingest")
        assert code == 1
        assert "No feeds" in err

    def test_manual_match_needs_confirmation(self, cli, db_path):
        cli("ingest", str(CSV_FEED))
        ids = record_ids(db_path, "Egyptian") + record_ids(db_path, "Egypt")

        code, out, _ = cli("match", *ids)
        assert code == 0
        assert "Would match 2 records" in out
        assert "ORG_NAT_" not in out

        code, out, _ = cli("match", *ids, "--group", "Egyptian", "--yes")
        assert code == 0
        assert "Master ID: ORG_NAT_00001" in out

        store = SqliteRecordStore(db_path)
        assert {store.get_record(i).status for i in ids} == {RecordStatus.MAPPED}
        store.close()

    def test_match_one_record_fails(self, cli, db_path):
        cli("ingest", str(CSV_FEED))
        code, _, err = cli("match", record_ids(db_path)[0], "--yes")
        assert code == 1
        assert "At least 2 records" in err

    def test_unmatch_and_move(self, cli, db_path):
        cli("seed")
        cli("ingest", str(CSV_FEED))
        cli("auto-match")
        egypt = record_ids(db_path, "Egypt")[0]

        code, out, _ = cli("unmatch", egypt)
        assert "Unmatched 1 records" in out

        code, out, _ = cli("move", egypt, "master_051")
        assert code == 0
        assert "to master_051" in out

        code, _, err = cli("move", egypt, "master_051")
        assert code == 1
        assert "already linked" in err

    def test_suggest_and_set_active(self, cli, db_path):
        cli("seed")
        cli("ingest", str(CSV_FEED))
        egypt = record_ids(db_path, "Egypt")[0]

        code, out, _ = cli("suggest", egypt, "--limit", "3")
        assert "master_051" in out

        code, out, _ = cli("set-active", "master_051", "off")
        assert "master_051 is now inactive" in out
        assert "master_051" not in cli("suggest", egypt)[1]

    def test_export(self, cli, tmp_path):
        cli("ingest", str(CSV_FEED))
        output = tmp_path / "out.csv"
        code, out, _ = cli("export", "--output-csv", str(output))
        assert code == 0
        with open(output, newline="") as f:
            assert len(list(csv.DictReader(f))) == 6

    def test_delete(self, cli, db_path):
        cli("ingest", str(CSV_FEED))
        target = record_ids(db_path)[0]
        assert cli("delete", target)[0] == 0
        assert target not in record_ids(db_path)
        assert cli("delete", target)[0] == 1

    def test_unknown_taxonomy(self, cli):
        code, _, err = cli("--taxonomy", "planet", "seed")
        assert code == 1
        assert "Unknown taxonomy" in err

    def test_corrupt_feed_reported(self, cli, tmp_path):
        bad = tmp_path / "bad.xlsx"
        bad.write_bytes(b"not a zip file")
        code, out, err = cli("ingest", str(CSV_FEED), str(bad))
        assert code == 0
        assert "Added 6 records" in out
        assert "feed for bad failed" in err

    def test_store_closed_after_each_command(self, cli, monkeypatch):
        closed = []
        close = SqliteRecordStore.close

        def tracking_close(store):
            closed.append(store.db_path)
            close(store)

        monkeypatch.setattr(SqliteRecordStore, "close", tracking_close)
        cli("seed")
        assert cli("stats", "--master", "ORG_NAT_09999")[0] == 1
        assert len(closed) == 2

    def test_unknown_master_stats(self, cli):
        code, _, err = cli("stats", "--master", "ORG_NAT_09999")
        assert code == 1
        assert "Unknown master id" in err
