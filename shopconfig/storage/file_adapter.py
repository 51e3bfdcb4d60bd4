"""
File backend: admin-config.json holds the snapshot, config-audit.json the audit array.
Both are replaced whole on every write.
"""

import json
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .base import StorageAdapter, parse_stamp
from ..core.config import AUDIT_FILE_NAME, AUDIT_LOG_LIMIT, CONFIG_FILE_NAME, SCHEMA_FILE_NAME, get_data_dir
from ..core.errors import ConfigError, ErrorCode
from ..core.migrations import MigrationLedger, MigrationManager, MigrationStep
from ..core.models import backfill_legacy, utcnow
from ..core.platform import PlatformType
from ..core.retry import RetryPolicy
from ..core.schema import AuditAction, AuditEntry, MigrationLedgerEntry
from ..util.files import read_json, write_json_atomic
from ..util.logging import logger


class FileMigrationLedger(MigrationLedger):
    """Ledger kept in schema-version.json next to the documents."""

    platform = PlatformType.FILE_BASED.value

    def __init__(self, adapter: 'FileStorageAdapter'):
        self.adapter = adapter

    def applied(self) -> List[MigrationLedgerEntry]:
        try:
            data = read_json(self.adapter.schema_path)
        except FileNotFoundError:
            return []
        entries = [MigrationLedgerEntry.from_dict(e) for e in data.get("migrations", [])]
        return sorted(entries, key=lambda e: e.version)

    def apply_step(self, step: MigrationStep) -> None:
        step.apply(self.adapter)
        entries = self.applied()
        entries.append(MigrationLedgerEntry(step.version, step.description, utcnow()))
        write_json_atomic(self.adapter.schema_path, {"migrations": [e.to_dict() for e in entries]})

    def existing_structures(self) -> Set[str]:
        names = set()
        for path in (self.adapter.config_path, self.adapter.audit_path, self.adapter.schema_path):
            if path.exists():
                names.add(path.name)
        return names


def _create_audit_document(adapter: 'FileStorageAdapter') -> None:
    if not adapter.audit_path.exists():
        write_json_atomic(adapter.audit_path, [])


def _backfill_legacy(adapter: 'FileStorageAdapter') -> None:
    upgraded = backfill_legacy(adapter._read_document())
    if upgraded is None:
        return
    adapter._write_document(upgraded.to_document())
    adapter._append_audit(AuditAction.MIGRATE.value, upgraded.to_json(), utcnow(), None)


FILE_MIGRATIONS = [
    MigrationStep(1, "Create audit trail document", _create_audit_document, creates=(AUDIT_FILE_NAME,)),
    MigrationStep(2, "Backfill legacy configuration documents", _backfill_legacy),
]


class FileStorageAdapter(StorageAdapter):
    platform = PlatformType.FILE_BASED

    def __init__(self, data_dir: Optional[Path] = None, retry_policy: Optional[RetryPolicy] = None):
        super().__init__(retry_policy)
        self.data_dir = Path(data_dir) if data_dir else get_data_dir()
        self.config_path = self.data_dir / CONFIG_FILE_NAME
        self.audit_path = self.data_dir / AUDIT_FILE_NAME
        self.schema_path = self.data_dir / SCHEMA_FILE_NAME

    def _initialize(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(self.data_dir, os.W_OK):
            raise ConfigError(f"Data directory is not writable: {self.data_dir}",
                              ErrorCode.INITIALIZATION_FAILED, self.platform_tag)
        _create_audit_document(self)

    def _migration_manager(self) -> MigrationManager:
        return MigrationManager(FileMigrationLedger(self), FILE_MIGRATIONS)

    def _read_document(self) -> Optional[Dict[str, Any]]:
        try:
            data = read_json(self.config_path)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.log_storage_operation("read", self.platform_tag, "invalid", {"file": CONFIG_FILE_NAME})
            return {}
        return data if isinstance(data, dict) else {}

    def _write_document(self, document: Dict[str, Any]) -> None:
        write_json_atomic(self.config_path, document)

    def _load_audit(self) -> List[Dict[str, Any]]:
        try:
            data = read_json(self.audit_path)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            logger.log_storage_operation("read_audit", self.platform_tag, "invalid", {"file": AUDIT_FILE_NAME})
            return []
        return data if isinstance(data, list) else []

    def _append_audit(self, action: str, snapshot: str, timestamp: datetime, actor_tag: Optional[str]) -> None:
        entry = AuditEntry(
            id=uuid.uuid4().hex,
            action=action,
            config_snapshot=snapshot,
            timestamp=timestamp,
            platform=self.platform_tag,
            actor_tag=actor_tag,
        )
        entries = self._load_audit()
        entries.insert(0, entry.to_dict())
        write_json_atomic(self.audit_path, entries[:AUDIT_LOG_LIMIT])

    def _read_audit(self, limit: int) -> List[AuditEntry]:
        entries = []
        for raw in self._load_audit()[:limit]:
            try:
                entries.append(AuditEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        return entries

    def _prune_audit(self, cutoff: datetime) -> int:
        entries = self._load_audit()
        kept = [e for e in entries if (parse_stamp(e.get("timestamp")) or cutoff) >= cutoff]
        if len(kept) != len(entries):
            write_json_atomic(self.audit_path, kept)
        return len(entries) - len(kept)

    def _probe(self) -> None:
        probe = self.data_dir / ".health-check"
        write_json_atomic(probe, {"ok": True})
        if read_json(probe) != {"ok": True}:
            raise ConfigError("Health probe read back a different value", ErrorCode.SAVE_FAILED, self.platform_tag)
        probe.unlink()

    def _stats(self) -> Dict[str, Any]:
        def size(path: Path) -> int:
            return path.stat().st_size if path.exists() else 0

        return {
            "configExists": self.config_path.exists(),
            "configBytes": size(self.config_path),
            "auditEntries": len(self._load_audit()),
            "auditBytes": size(self.audit_path),
            "schemaVersion": self._migration_manager().current_version(),
            "location": str(self.data_dir),
        }
