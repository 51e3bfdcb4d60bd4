#!/usr/bin/env python3
"""
Command-line backup of the storefront configuration snapshot and audit trail.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shopconfig.core.backup import create_backup
from shopconfig.core.errors import BackupError, ConfigError
from shopconfig.storage import dispose, get_adapter


async def run(args) -> int:
    adapter = await get_adapter()
    try:
        manifest = await create_backup(
            adapter,
            args.backup_path,
            include_credentials=not args.redact_credentials,
            dry_run=args.dry_run,
        )
    finally:
        await dispose()

    if args.dry_run:
        print("DRY RUN - Backup validation completed successfully")
        print(f"Platform: {manifest.platform}")
        print(f"Audit entries: {manifest.audit_entries}")
        if not manifest.includes_credentials:
            print("Privacy: API key will be redacted")
    else:
        print(f"Backup created successfully: {args.backup_path}")
        print(f"Backup ID: {manifest.backup_id}")
        print(f"Platform: {manifest.platform}")
        if args.verbose:
            print(f"Created: {manifest.created_at}")
            print(f"Schema version: {manifest.schema_version}")
            print(f"Audit entries: {manifest.audit_entries}")
            print(f"Checksum: {manifest.checksum}")
            print(f"Manifest: {Path(args.backup_path).with_suffix('.manifest.json')}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Back up the storefront configuration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s backups/config.json                        # Full backup
  %(prog)s backups/config.json --redact-credentials   # Withhold the catalog API key
  %(prog)s backups/config.json --dry-run              # Validate without writing

Backup creates two files:
- config.json (configuration snapshot + audit trail)
- config.manifest.json (metadata and checksum)

The storage backend is chosen from the environment (SHOPCONFIG_PLATFORM, DATA_DIR, DATABASE_PATH).
        """
    )

    parser.add_argument(
        "backup_path",
        help="Path for the backup file"
    )

    parser.add_argument(
        "--redact-credentials", "-r",
        action="store_true",
        help="Leave the catalog API key out of the backup"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Validate backup without creating files"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed backup information"
    )

    args = parser.parse_args()

    try:
        return asyncio.run(run(args))
    except BackupError as e:
        print(f"ERROR: Backup failed: {e}")
        return 1
    except ConfigError as e:
        print(f"ERROR: Storage unavailable: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
