"""
Report Generator - Format groups and records for human consumption.

Produces console output and CSV export for the mapping screens.
"""

import csv
import io
from datetime import datetime
from typing import Optional, TextIO

from .grouping import group_conflicts
from .models import Group, GroupWarning, MasterSuggestion, RecordStatus, SupplierRecord

STATUS_ORDER = {
    RecordStatus.NEEDS_REVIEW: 0,
    RecordStatus.PENDING: 1,
    RecordStatus.MAPPED: 2,
}


def format_groups(groups: dict[str, Group], show_mapped: bool = True) -> str:
    """
    Format groups for console display.

    Each group lists its members (review first, mapped last) with supplier,
    code, status, master id, and the score that placed them.

    Args:
        groups: Output of group_records
        show_mapped: Whether to list MAPPED members (default True)

    Returns:
        Formatted string for console output
    """
    if not groups:
        return "No supplier records to group.\n"

    lines = []
    for key, group in groups.items():
        members = sorted(group.members, key=lambda r: STATUS_ORDER.get(r.status, 99))
        if not show_mapped:
            members = [r for r in members if r.status != RecordStatus.MAPPED]
        if not members:
            continue

        pending = len(group.with_status(RecordStatus.PENDING))
        lines.append(f"\nGROUP: {key}  ({len(group.members)} records, {pending} pending)")
        lines.append("=" * 78)
        for issue in group_conflicts(group):
            lines.append(f"  ! {issue}")
        lines.append(f"{'RECORD':<12} {'SUPPLIER':<12} {'LABEL':<22} {'CODE':<6} {'STATUS':<8} {'MASTER':<14} SCORE")
        lines.append("-" * 78)
        for r in members:
            lines.append(
                f"{r.id[:12]:<12} {r.supplier_name[:12]:<12} {r.label[:22]:<22} "
                f"{(r.local_code or '-')[:6]:<6} {r.status.value:<8} {(r.master_id or '-')[:14]:<14} "
                f"{group.scores.get(r.id, '')}"
            )

    return "\n".join(lines)


def format_summary(summary: dict, warnings: Optional[list[GroupWarning]] = None) -> str:
    """Status counts, followed by any advisory warnings from the last command."""
    lines = ["=" * 40, "SUMMARY"]
    lines.append(f"  Total records: {summary['total']}")
    lines.append(f"  Pending:       {summary['pending']}")
    lines.append(f"  Mapped:        {summary['mapped']}")
    lines.append(f"  Needs review:  {summary['review']}")
    lines.append("=" * 40)

    for warning in warnings or []:
        lines.append(f"WARNING [{warning.group_key}]: {'; '.join(warning.issues)}")

    return "\n".join(lines)


def format_suggestions(record: SupplierRecord, suggestions: list[MasterSuggestion]) -> str:
    lines = [f"Suggestions for {record.label!r} ({record.supplier_name}):"]
    if not suggestions:
        lines.append("  (no active masters)")
    for s in suggestions:
        flag = " [code match]" if s.code_match else ""
        lines.append(f"  {s.confidence:>3}%  {s.master.id:<14} {s.master.canonical_name}{flag}")
    return "\n".join(lines)


def export_csv(
    records: list[SupplierRecord],
    output: TextIO | None = None,
    include_mapped: bool = True,
) -> str:
    """
    Export supplier records to CSV format.

    Args:
        records: Records to export
        output: Optional file handle to write to
        include_mapped: Whether to include MAPPED records (default True)

    Returns:
        CSV string (also writes to output if provided)
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer)

    writer.writerow([
        "record_id",
        "supplier_id",
        "supplier_name",
        "supplier_local_id",
        "label",
        "local_code",
        "country_hint",
        "country_code_hint",
        "status",
        "master_id",
        "confidence",
        "updated_at",
    ])

    for r in records:
        if not include_mapped and r.status == RecordStatus.MAPPED:
            continue
        writer.writerow([
            r.id,
            r.supplier_id,
            r.supplier_name,
            r.supplier_local_id,
            r.label,
            r.local_code or "",
            r.country_hint or "",
            r.country_code_hint or "",
            r.status.value,
            r.master_id or "",
            "" if r.confidence is None else r.confidence,
            r.updated_at.isoformat(),
        ])

    csv_content = buffer.getvalue()

    if output:
        output.write(csv_content)

    return csv_content


def generate_report_filename(taxonomy: str | None = None, extension: str = "csv") -> str:
    """
    Generate a filename for an export.

    Returns:
        Filename like "taxonomy_match_nationality_2026-01-08.csv"
    """
    date_str = datetime.now().strftime("%Y-%m-%d")
    if taxonomy:
        return f"taxonomy_match_{taxonomy}_{date_str}.{extension}"
    return f"taxonomy_match_{date_str}.{extension}"
