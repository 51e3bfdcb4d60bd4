#!/usr/bin/env python3
"""
Command-line maintenance: storage statistics, snapshot repair and audit cleanup.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shopconfig.core.errors import ConfigError, MaintenanceError
from shopconfig.core.maintenance import (
    MaintenanceReport,
    cleanup_old_audit_entries,
    get_storage_stats,
    perform_full_maintenance,
    repair_configuration,
)
from shopconfig.storage import dispose, get_adapter


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = [f"Operation: {report.operation}"]

    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > 0:
        lines.append(f"Status: ISSUES FOUND ({report.issues_found} issues)")
    else:
        lines.append("Status: SUCCESS")

    if report.issues_resolved > 0:
        lines.append(f"Issues Resolved: {report.issues_resolved}")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    for title, items in (("Errors", report.errors), ("Recommendations", report.recommendations),
                         ("Actions Taken", report.actions_taken)):
        if items:
            lines.append(f"{title}:")
            lines.extend(f"  - {item}" for item in items)

    return "\n".join(lines)


async def run(args) -> int:
    adapter = await get_adapter()
    reports = []
    try:
        if args.stats:
            stats = await get_storage_stats(adapter)
            print(json.dumps(stats, indent=2, default=str))

        if args.full_maintenance:
            reports = await perform_full_maintenance(adapter, keep_days=args.keep_days)
        else:
            if args.repair:
                reports.append(await repair_configuration(adapter, actor_tag=args.actor))
            if args.cleanup_audit:
                reports.append(await cleanup_old_audit_entries(adapter, args.keep_days, dry_run=args.dry_run))
    finally:
        await dispose()

    if args.json:
        print(json.dumps({"reports": [report.to_dict() for report in reports]}, indent=2, default=str))
    else:
        for report in reports:
            print(format_report(report))
            print("-" * 40)

    return 1 if any(report.errors for report in reports) else 0


def main():
    parser = argparse.ArgumentParser(
        description="Configuration storage maintenance utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --stats                          # Backend statistics and schema health
  %(prog)s --repair                         # Recreate or backfill the snapshot
  %(prog)s --cleanup-audit --keep-days 7    # Drop audit entries older than 7 days
  %(prog)s --full-maintenance --json        # Everything, as JSON
        """
    )

    parser.add_argument("--stats", "-s", action="store_true",
                        help="Show backend statistics and schema health")
    parser.add_argument("--repair", "-r", action="store_true",
                        help="Validate and repair the configuration snapshot")
    parser.add_argument("--cleanup-audit", "-c", action="store_true",
                        help="Remove old audit trail entries")
    parser.add_argument("--full-maintenance", "-f", action="store_true",
                        help="Repair, then clean up the audit trail")
    parser.add_argument("--keep-days", type=int, default=30,
                        help="Audit entries newer than this are kept (default 30)")
    parser.add_argument("--actor", "-a", help="Identity recorded on repair audit entries")
    parser.add_argument("--dry-run", "-n", action="store_true",
                        help="Report what cleanup would remove without removing it")
    parser.add_argument("--json", "-j", action="store_true",
                        help="Output results as JSON instead of human-readable text")

    args = parser.parse_args()

    if not (args.stats or args.repair or args.cleanup_audit or args.full_maintenance):
        parser.error("Must specify at least one maintenance operation")

    if args.full_maintenance and (args.repair or args.cleanup_audit):
        parser.error("--full-maintenance cannot be combined with individual operations")

    try:
        return asyncio.run(run(args))
    except MaintenanceError as e:
        print(f"ERROR: {e}")
        return 1
    except ConfigError as e:
        print(f"ERROR: Storage unavailable: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
