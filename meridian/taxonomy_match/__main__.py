"""
CLI entry point for Taxonomy Match.

Usage:
    python -m meridian.taxonomy_match seed
    python -m meridian.taxonomy_match ingest feeds/ebooking.csv --supplier-id ebooking
    python -m meridian.taxonomy_match groups --status pending
    python -m meridian.taxonomy_match auto-match
    python -m meridian.taxonomy_match match REC1 REC2 --yes
    python -m meridian.taxonomy_match export --output-csv nationalities.csv
"""

import argparse
import logging
import sys
from pathlib import Path

from .catalog import load_catalog
from .config import Config, default_db_path, load_config
from .errors import MatchError
from .feeds import FileSupplierFeed, feeds_from_config
from .models import RecordStatus
from .report import export_csv, format_groups, format_suggestions, format_summary, generate_report_filename
from .service import MappingService
from .store import SqliteRecordStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taxonomy_match",
        description="Taxonomy Match - Reconcile supplier taxonomy values into master records",
    )
    parser.add_argument("--config", default=None, metavar="FILE",
                        help="Config file (default: MERIDIAN_CONFIG or the bundled taxonomy_config.json)")
    parser.add_argument("--db", default=None, metavar="FILE",
                        help="SQLite database (default: MERIDIAN_DB_PATH or data/taxonomy_match.db)")
    parser.add_argument("--taxonomy", default="nationality", help="Taxonomy to work on (default: nationality)")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Create master records from the reference catalog")

    ingest = sub.add_parser("ingest", help="Append supplier feed rows (CSV, JSON or XLSX)")
    ingest.add_argument("files", nargs="*", metavar="FILE")
    ingest.add_argument("--supplier-id", help="Supplier id for files without a supplier column")
    ingest.add_argument("--supplier-name", help="Supplier name for files without a supplier column")
    ingest.add_argument("--all", action="store_true", help="Resync every active supplier feed from the config")

    groups = sub.add_parser("groups", help="Show candidate groups")
    groups.add_argument("--search", help="Filter by label or supplier name")
    groups.add_argument("--status", choices=[s.value for s in RecordStatus])
    groups.add_argument("--supplier", help="Filter by supplier id")
    groups.add_argument("--hide-mapped", action="store_true", help="Only list records not yet mapped")

    sub.add_parser("auto-match", help="Give every group with 2+ pending records a new master")
    sub.add_parser("auto-map", help="Map pending records onto existing masters above the threshold")

    match = sub.add_parser("match", help="Match selected records into one new master")
    match.add_argument("record_ids", nargs="+", metavar="RECORD")
    match.add_argument("--group", help="Group key the selection came from")
    match.add_argument("--yes", action="store_true", help="Confirm without stopping at the proposal")

    unmatch = sub.add_parser("unmatch", help="Revert records to pending, keeping their master ids")
    unmatch.add_argument("record_ids", nargs="+", metavar="RECORD")

    move = sub.add_parser("move", help="Reassign one record to a different master")
    move.add_argument("record_id", metavar="RECORD")
    move.add_argument("master_id", metavar="MASTER")

    map_ = sub.add_parser("map", help="Link one record to a chosen master")
    map_.add_argument("record_id", metavar="RECORD")
    map_.add_argument("master_id", metavar="MASTER")

    suggest = sub.add_parser("suggest", help="Rank masters for one record")
    suggest.add_argument("record_id", metavar="RECORD")
    suggest.add_argument("--limit", type=int, default=None)

    stats = sub.add_parser("stats", help="Status counts, or one master's mapped count")
    stats.add_argument("--master", metavar="MASTER")

    export = sub.add_parser("export", help="Export supplier records to CSV")
    export.add_argument("--output-csv", metavar="FILE")
    export.add_argument("--pending-only", action="store_true")

    delete = sub.add_parser("delete", help="Delete one supplier record")
    delete.add_argument("record_id", metavar="RECORD")

    active = sub.add_parser("set-active", help="Activate or deactivate a master record")
    active.add_argument("master_id", metavar="MASTER")
    active.add_argument("state", choices=["on", "off"])

    return parser


def build_service(args) -> tuple[MappingService, Config]:
    config = load_config(args.config)
    taxonomy = config.taxonomy(args.taxonomy)
    catalog = load_catalog(config.resolve(taxonomy.catalog)) if taxonomy.catalog else None
    store = SqliteRecordStore(args.db or default_db_path(), taxonomy=taxonomy.name)
    return MappingService(store, taxonomy, catalog, config.settings), config


def run(args) -> int:
    service, config = build_service(args)
    try:
        return execute(args, service, config)
    finally:
        service.store.close()


def execute(args, service: MappingService, config: Config) -> int:
    if args.command == "seed":
        seeded = service.seed_catalog()
        print(f"Seeded {len(seeded)} master records")

    elif args.command == "ingest":
        if args.all:
            feeds = feeds_from_config(config)
        else:
            feeds = [FileSupplierFeed(Path(f), args.supplier_id, args.supplier_name) for f in args.files]
        if not feeds:
            print("Error: No feeds to ingest", file=sys.stderr)
            return 1
        result = service.resync(feeds)
        print(f"Added {len(result.added)} records, skipped {result.duplicates} duplicates")
        for supplier_id, error in result.failed_suppliers.items():
            print(f"Warning: feed for {supplier_id} failed: {error}", file=sys.stderr)

    elif args.command == "groups":
        status = RecordStatus(args.status) if args.status else None
        groups = service.groups(search=args.search, status=status, supplier_id=args.supplier)
        print(format_groups(groups, show_mapped=not args.hide_mapped))

    elif args.command == "auto-match":
        outcome = service.auto_match()
        print(f"Mapped {outcome.mapped_count} records into {len(outcome.master_ids)} new masters")
        print(format_summary(service.summary(), outcome.warnings))

    elif args.command == "auto-map":
        outcome = service.auto_map()
        print(f"Mapped {outcome.mapped_count} records onto existing masters")

    elif args.command == "match":
        proposal = service.propose_manual_match(args.record_ids, args.group)
        for warning in proposal.warnings:
            print(f"Warning: {warning}")
        if not args.yes:
            print(f"Would match {len(proposal.member_ids)} records into a new master. Re-run with --yes to confirm.")
            return 0
        outcome = service.commit(proposal)
        print(f"Matched {len(proposal.member_ids)} records. Master ID: {outcome.master_ids[0]}")

    elif args.command == "unmatch":
        result = service.unmatch(args.record_ids)
        print(f"Unmatched {len(result.unmatched)} records (master ids preserved)")
        if result.skipped:
            print(f"Skipped {len(result.skipped)} records with no master id: {', '.join(result.skipped)}")

    elif args.command == "move":
        record = service.move(args.record_id, args.master_id)
        print(f"Moved {record.label!r} to {record.master_id}")

    elif args.command == "map":
        record = service.map_to_master(args.record_id, args.master_id)
        print(f"Mapped {record.label!r} to {record.master_id} ({record.confidence}%)")

    elif args.command == "suggest":
        record = service.store.get_record(args.record_id)
        suggestions = service.suggest_masters(args.record_id, args.limit)
        print(format_suggestions(record, suggestions))

    elif args.command == "stats":
        if args.master:
            stats = service.master_stats(args.master)
            print(f"{stats.master.id} {stats.master.canonical_name}: {stats.mapped_count} mapped "
                  f"from {', '.join(stats.supplier_set) or 'no suppliers'}")
        else:
            print(format_summary(service.summary()))

    elif args.command == "export":
        records = service.records()
        output_path = Path(args.output_csv or generate_report_filename(args.taxonomy))
        with open(output_path, "w", newline="") as f:
            export_csv(records, output=f, include_mapped=not args.pending_only)
        print(f"CSV exported to: {output_path}")

    elif args.command == "delete":
        service.delete_record(args.record_id)
        print(f"Deleted {args.record_id}")

    elif args.command == "set-active":
        master = service.set_master_active(args.master_id, args.state == "on")
        print(f"{master.id} is now {'active' if master.is_active else 'inactive'}")

    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        code = run(args)
    except MatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
