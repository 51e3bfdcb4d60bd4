"""
Export, import, backup and restore of the configuration snapshot.

Backups are plain JSON files with a side-car manifest carrying a checksum.
Restores take a safety backup of the current state first and are audited as IMPORT.
"""

import hashlib
import json
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .config import VERSION
from .errors import BackupError, ConfigError, ErrorCode, RestoreError
from .models import Configuration, utcnow
from .schema import AuditAction
from ..storage.base import StorageAdapter
from ..util.files import read_json, write_json_atomic
from ..util.logging import logger

EXPORT_FORMAT = "shopconfig-export"
BACKUP_FORMAT = "shopconfig-backup"


@dataclass
class BackupManifest:
    """Backup metadata with an integrity checksum over the payload."""
    backup_id: str
    created_at: datetime
    platform: str
    schema_version: int
    audit_entries: int
    includes_credentials: bool
    checksum: str = ""
    version: str = VERSION

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupManifest':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


def _calculate_checksum(payload: Dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode('utf-8')
    return hashlib.sha256(canonical).hexdigest()


async def export_configuration(adapter: StorageAdapter, include_credentials: bool = False,
                               include_audit: bool = False) -> Dict[str, Any]:
    """Portable JSON export of the current snapshot (API key withheld unless asked for)."""
    config = await adapter.get_config()
    if config is None:
        raise ConfigError("No configuration stored yet", ErrorCode.NOT_FOUND, adapter.platform_tag)

    document = config.to_document() if include_credentials else config.public_document()

    export = {
        "format": EXPORT_FORMAT,
        "version": VERSION,
        "exportedAt": utcnow().isoformat(),
        "platform": adapter.platform_tag,
        "config": document,
    }
    if include_audit:
        export["audit"] = [entry.to_dict() for entry in await adapter.get_audit_log()]
    return export


async def import_configuration(adapter: StorageAdapter, data: Dict[str, Any],
                               actor_tag: Optional[str] = None) -> Configuration:
    """
    Replace the snapshot with an exported (or raw) configuration document.

    Raises ConfigError(INVALID_CONFIG) when the document fails validation.
    """
    document = data["config"] if data.get("format") == EXPORT_FORMAT else data
    stored = await adapter.store_config(document, AuditAction.IMPORT, actor_tag)
    logger.log_storage_operation("import", adapter.platform_tag)
    return stored


async def create_backup(adapter: StorageAdapter, backup_path: Union[str, Path],
                        include_credentials: bool = True, dry_run: bool = False) -> BackupManifest:
    """
    Write the snapshot and audit trail to `backup_path` plus a `.manifest.json` side-car.

    Raises:
        BackupError: If there is nothing to back up or writing fails
    """
    backup_file = Path(backup_path)
    manifest_file = backup_file.with_suffix('.manifest.json')
    backup_id = f"backup_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{secrets.token_hex(4)}"

    try:
        config = await adapter.get_config()
        if config is None:
            raise BackupError("No configuration stored yet; nothing to back up")

        document = config.to_document() if include_credentials else config.public_document()
        audit = [entry.to_dict() for entry in await adapter.get_audit_log()]
        schema_version = max((m.version for m in await adapter.get_applied_migrations()), default=0)

        payload = {"config": document, "audit": audit}
        manifest = BackupManifest(
            backup_id=backup_id,
            created_at=utcnow(),
            platform=adapter.platform_tag,
            schema_version=schema_version,
            audit_entries=len(audit),
            includes_credentials=include_credentials,
            checksum=_calculate_checksum(payload),
        )

        if dry_run:
            return manifest

        write_json_atomic(backup_file, {"format": BACKUP_FORMAT, "manifest": manifest.to_dict(), **payload})
        write_json_atomic(manifest_file, manifest.to_dict())

    except BackupError:
        raise
    except Exception as e:
        for path in (backup_file, manifest_file):
            if path.exists():
                path.unlink()
        raise BackupError(f"Backup creation failed: {e}") from e

    logger.log_operation("backup.create", "success", {
        "backup_id": backup_id,
        "platform": adapter.platform_tag,
        "audit_entries": manifest.audit_entries,
    })
    return manifest


def load_backup(backup_path: Union[str, Path]) -> Dict[str, Any]:
    """Read a backup file and verify its checksum. Raises RestoreError."""
    try:
        content = read_json(backup_path)
    except (OSError, json.JSONDecodeError) as e:
        raise RestoreError(f"Cannot read backup {backup_path}: {e}") from e

    if not isinstance(content, dict) or content.get("format") != BACKUP_FORMAT:
        raise RestoreError("Invalid backup file format")

    manifest = BackupManifest.from_dict(content["manifest"])
    payload = {"config": content.get("config"), "audit": content.get("audit", [])}
    actual = _calculate_checksum(payload)
    if actual != manifest.checksum:
        raise RestoreError(f"Backup checksum mismatch: expected {manifest.checksum}, got {actual}")
    return {"manifest": manifest, **payload}


async def restore_backup(adapter: StorageAdapter, backup_path: Union[str, Path],
                         actor_tag: Optional[str] = None, dry_run: bool = False,
                         safety_backup: bool = True) -> Dict[str, Any]:
    """
    Restore the snapshot from a backup file.

    The audit trail is not rewritten; the restore itself is appended as IMPORT.
    """
    backup = load_backup(backup_path)
    manifest = backup["manifest"]
    result = {
        "backup_id": manifest.backup_id,
        "source_platform": manifest.platform,
        "audit_entries_in_backup": len(backup["audit"]),
        "dry_run": dry_run,
        "restored": False,
        "safety_backup": None,
        "warnings": [],
    }

    if dry_run:
        result["valid"] = True
        return result

    if safety_backup:
        safety_path = Path(backup_path).parent / f"pre_restore_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        try:
            await create_backup(adapter, safety_path)
            result["safety_backup"] = str(safety_path)
        except BackupError as e:
            result["warnings"].append(f"Safety backup skipped: {e}")

    try:
        await adapter.store_config(backup["config"], AuditAction.IMPORT, actor_tag)
    except ConfigError as e:
        raise RestoreError(f"Restore failed: {e.message}") from e

    result["restored"] = True
    logger.log_operation("backup.restore", "success", {
        "backup_id": manifest.backup_id,
        "platform": adapter.platform_tag,
    })
    return result
