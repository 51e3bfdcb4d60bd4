#!/usr/bin/env python3
"""
Command-line restore of the storefront configuration from a backup file.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shopconfig.core.backup import load_backup, restore_backup
from shopconfig.core.errors import ConfigError, RestoreError
from shopconfig.storage import dispose, get_adapter


async def run(args) -> int:
    adapter = await get_adapter()
    try:
        result = await restore_backup(
            adapter,
            args.backup_path,
            actor_tag=args.actor,
            dry_run=args.dry_run,
            safety_backup=not args.no_safety_backup,
        )
    finally:
        await dispose()

    if args.dry_run:
        print("DRY RUN - Backup is valid and can be restored")
    else:
        print(f"Restore completed from backup {result['backup_id']}")
        if result["safety_backup"]:
            print(f"Safety backup: {result['safety_backup']}")
    for warning in result["warnings"]:
        print(f"WARNING: {warning}")
    if args.verbose:
        print(f"Source platform: {result['source_platform']}")
        print(f"Audit entries in backup: {result['audit_entries_in_backup']}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Restore the storefront configuration from a backup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s backups/config.json             # Restore (asks for confirmation)
  %(prog)s backups/config.json --dry-run   # Verify checksum only
  %(prog)s backups/config.json --force     # Skip confirmation

The restore process:
1. Verifies the backup checksum
2. Writes a pre_restore_*.json safety backup next to the backup file
3. Replaces the configuration snapshot (audited as IMPORT)
        """
    )

    parser.add_argument(
        "backup_path",
        help="Path to the backup file"
    )

    parser.add_argument(
        "--actor", "-a",
        help="Identity recorded on the IMPORT audit entry"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Validate backup without performing restoration"
    )

    parser.add_argument(
        "--no-safety-backup",
        action="store_true",
        help="Skip the pre-restore backup of the current state"
    )

    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip the confirmation prompt"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed restoration information"
    )

    args = parser.parse_args()

    backup_path = Path(args.backup_path)
    if not backup_path.exists():
        print(f"ERROR: Backup file not found: {backup_path}")
        return 1

    try:
        manifest = load_backup(backup_path)["manifest"]
        print("Backup Information:")
        print(f"  ID: {manifest.backup_id}")
        print(f"  Created: {manifest.created_at}")
        print(f"  Platform: {manifest.platform}")
        print(f"  Includes credentials: {manifest.includes_credentials}")
        print()

        if not args.dry_run and not args.force:
            print("WARNING: This will replace the current configuration!")
            response = input("Are you sure you want to proceed? (type 'yes' to continue): ")
            if response.lower() != 'yes':
                print("Operation cancelled by user.")
                return 0

        return asyncio.run(run(args))
    except RestoreError as e:
        print(f"ERROR: Restore failed: {e}")
        return 1
    except ConfigError as e:
        print(f"ERROR: Storage unavailable: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
