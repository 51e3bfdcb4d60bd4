"""
Embedded relational backend on SQLite.

admin_config holds exactly one row (id = 1) replaced by upsert; config_audit is
append-only and capped; schema_version is the migration ledger.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .base import StorageAdapter
from ..core.config import AUDIT_LOG_LIMIT, get_database_path
from ..core.db import get_db, index_exists, table_columns, table_exists, transaction
from ..core.migrations import MigrationLedger, MigrationManager, MigrationStep
from ..core.models import backfill_legacy, utcnow
from ..core.platform import PlatformType
from ..core.retry import RetryPolicy
from ..core.schema import AuditAction, AuditEntry, MigrationLedgerEntry

CONFIG_ROW_ID = 1


def _stamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _create_config_table(conn: sqlite3.Connection) -> None:
    conn.execute('''
        CREATE TABLE IF NOT EXISTS admin_config (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            data TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1
        )
    ''')


def _create_audit_table(conn: sqlite3.Connection) -> None:
    conn.execute('''
        CREATE TABLE IF NOT EXISTS config_audit (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            data TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            actor_tag TEXT
        )
    ''')
    conn.execute('CREATE INDEX IF NOT EXISTS idx_config_audit_timestamp ON config_audit(timestamp DESC)')


def _add_audit_platform(conn: sqlite3.Connection) -> None:
    if 'platform' not in table_columns(conn, 'config_audit'):
        conn.execute(
            "ALTER TABLE config_audit ADD COLUMN platform TEXT NOT NULL DEFAULT 'relationalEmbedded'"
        )
    conn.execute('CREATE INDEX IF NOT EXISTS idx_config_audit_action ON config_audit(action)')


def _backfill_legacy(conn: sqlite3.Connection) -> None:
    row = conn.execute('SELECT data FROM admin_config WHERE id = ?', (CONFIG_ROW_ID,)).fetchone()
    if row is None:
        return
    try:
        document = json.loads(row["data"])
    except json.JSONDecodeError:
        return
    upgraded = backfill_legacy(document)
    if upgraded is None:
        return
    now = _stamp(utcnow())
    conn.execute(
        'UPDATE admin_config SET data = ?, updated_at = ?, version = version + 1 WHERE id = ?',
        (upgraded.to_json(), now, CONFIG_ROW_ID)
    )
    conn.execute(
        'INSERT INTO config_audit (action, data, timestamp, actor_tag, platform) VALUES (?, ?, ?, NULL, ?)',
        (AuditAction.MIGRATE.value, upgraded.to_json(), now, PlatformType.RELATIONAL_EMBEDDED.value)
    )


SQLITE_MIGRATIONS = [
    MigrationStep(1, "Create admin_config table", _create_config_table, creates=("admin_config",)),
    MigrationStep(2, "Create config_audit table with timestamp index", _create_audit_table,
                  creates=("config_audit", "idx_config_audit_timestamp")),
    MigrationStep(3, "Add platform column and action index to config_audit", _add_audit_platform,
                  creates=("config_audit.platform", "idx_config_audit_action")),
    MigrationStep(4, "Backfill legacy configuration documents", _backfill_legacy),
]


class SqliteMigrationLedger(MigrationLedger):
    """schema_version table; each step and its ledger row commit in one transaction."""

    platform = PlatformType.RELATIONAL_EMBEDDED.value

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def ensure(self) -> None:
        with get_db(self.db_path) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL,
                    description TEXT
                )
            ''')

    def applied(self) -> List[MigrationLedgerEntry]:
        with get_db(self.db_path) as conn:
            if not table_exists(conn, 'schema_version'):
                return []
            rows = conn.execute(
                'SELECT version, applied_at, description FROM schema_version ORDER BY version'
            ).fetchall()
        return [
            MigrationLedgerEntry(row["version"], row["description"] or "", datetime.fromisoformat(row["applied_at"]))
            for row in rows
        ]

    def apply_step(self, step: MigrationStep) -> None:
        self.ensure()
        with get_db(self.db_path) as conn:
            with transaction(conn):
                step.apply(conn)
                conn.execute(
                    'INSERT INTO schema_version (version, applied_at, description) VALUES (?, ?, ?)',
                    (step.version, _stamp(utcnow()), step.description)
                )

    def existing_structures(self) -> Set[str]:
        names = set()
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT type, name FROM sqlite_master WHERE type IN ('table', 'index')"
            ).fetchall()
            for row in rows:
                names.add(row["name"])
                if row["type"] == 'table' and not row["name"].startswith('sqlite_'):
                    names.update(f"{row['name']}.{column}" for column in table_columns(conn, row["name"]))
        return names


class SqliteStorageAdapter(StorageAdapter):
    platform = PlatformType.RELATIONAL_EMBEDDED

    def __init__(self, db_path: Optional[Path] = None, retry_policy: Optional[RetryPolicy] = None):
        super().__init__(retry_policy)
        self.db_path = Path(db_path) if db_path else get_database_path()
        self.ledger = SqliteMigrationLedger(self.db_path)

    def _initialize(self) -> None:
        self.ledger.ensure()
        self._migration_manager().run()

    def _migration_manager(self) -> MigrationManager:
        return MigrationManager(self.ledger, SQLITE_MIGRATIONS)

    def _read_document(self) -> Optional[Dict[str, Any]]:
        with get_db(self.db_path) as conn:
            row = conn.execute('SELECT data FROM admin_config WHERE id = ?', (CONFIG_ROW_ID,)).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _write_document(self, document: Dict[str, Any]) -> None:
        with get_db(self.db_path) as conn:
            conn.execute('''
                INSERT INTO admin_config (id, data, updated_at, version) VALUES (?, ?, ?, 1)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at,
                    version = admin_config.version + 1
            ''', (CONFIG_ROW_ID, json.dumps(document, ensure_ascii=False), _stamp(utcnow())))

    def _append_audit(self, action: str, snapshot: str, timestamp: datetime, actor_tag: Optional[str]) -> None:
        with get_db(self.db_path) as conn:
            with transaction(conn):
                conn.execute(
                    'INSERT INTO config_audit (action, data, timestamp, actor_tag, platform) VALUES (?, ?, ?, ?, ?)',
                    (action, snapshot, _stamp(timestamp), actor_tag, self.platform_tag)
                )
                conn.execute('''
                    DELETE FROM config_audit WHERE id NOT IN (
                        SELECT id FROM config_audit ORDER BY id DESC LIMIT ?
                    )
                ''', (AUDIT_LOG_LIMIT,))

    def _read_audit(self, limit: int) -> List[AuditEntry]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                'SELECT id, action, data, timestamp, actor_tag, platform FROM config_audit ORDER BY id DESC LIMIT ?',
                (limit,)
            ).fetchall()
        return [
            AuditEntry(
                id=row["id"],
                action=row["action"],
                config_snapshot=row["data"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                platform=row["platform"],
                actor_tag=row["actor_tag"],
            )
            for row in rows
        ]

    def _prune_audit(self, cutoff: datetime) -> int:
        with get_db(self.db_path) as conn:
            cursor = conn.execute('DELETE FROM config_audit WHERE timestamp < ?', (_stamp(cutoff),))
            return cursor.rowcount

    def _probe(self) -> None:
        with get_db(self.db_path) as conn:
            conn.execute('SELECT 1').fetchone()
            conn.execute('SELECT COUNT(*) FROM admin_config').fetchone()

    def _stats(self) -> Dict[str, Any]:
        with get_db(self.db_path) as conn:
            config_row = conn.execute(
                'SELECT updated_at, version FROM admin_config WHERE id = ?', (CONFIG_ROW_ID,)
            ).fetchone()
            audit_count = conn.execute('SELECT COUNT(*) FROM config_audit').fetchone()[0]
            has_indexes = index_exists(conn, 'idx_config_audit_timestamp')
        return {
            "configExists": config_row is not None,
            "configVersion": config_row["version"] if config_row else 0,
            "configUpdatedAt": config_row["updated_at"] if config_row else None,
            "auditEntries": audit_count,
            "auditIndexed": has_indexes,
            "databaseBytes": self.db_path.stat().st_size if self.db_path.exists() else 0,
            "schemaVersion": self._migration_manager().current_version(),
            "location": str(self.db_path),
        }
