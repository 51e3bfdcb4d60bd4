"""
Maintenance routines: storage statistics, audit trail cleanup and snapshot repair.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .errors import ConfigError, MaintenanceError
from .models import default_config, parse_document, upgrade_legacy_document, utcnow
from .schema import AuditAction
from ..storage.base import StorageAdapter
from ..util.logging import logger


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = None
    recommendations: List[str] = None
    errors: List[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.actions_taken is None:
            self.actions_taken = []
        if self.recommendations is None:
            self.recommendations = []
        if self.errors is None:
            self.errors = []
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "recommendations": self.recommendations,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


async def get_storage_stats(adapter: StorageAdapter) -> Dict[str, Any]:
    """Backend statistics plus the migration health report."""
    stats = await adapter.get_storage_stats()
    health = await adapter.check_database_health()
    stats["healthy"] = health.healthy
    stats["healthError"] = health.error
    stats["platformInfo"] = adapter.get_platform_info().to_dict()
    return stats


async def cleanup_old_audit_entries(adapter: StorageAdapter, keep_days: int = 30,
                                    dry_run: bool = False) -> MaintenanceReport:
    """Drop audit entries older than `keep_days`. The 100-entry cap still applies on top."""
    if keep_days < 1:
        raise MaintenanceError(f"keep_days must be >= 1: {keep_days}")

    report = MaintenanceReport(operation="cleanup_old_audit_entries", started_at=utcnow())
    cutoff = utcnow() - timedelta(days=keep_days)
    report.metadata = {"cutoff": cutoff.isoformat(), "keep_days": keep_days, "dry_run": dry_run}

    try:
        entries = await adapter.get_audit_log()
        stale = [e for e in entries if e.timestamp < cutoff]
        report.issues_found = len(stale)
        if stale and not dry_run:
            removed = await adapter.prune_audit_entries(cutoff)
            report.issues_resolved = removed
            report.actions_taken.append(f"Removed {removed} audit entries older than {keep_days} days")
        elif stale:
            report.recommendations.append(f"Run without dry_run to remove {len(stale)} audit entries")
    except ConfigError as e:
        report.errors.append(e.message)

    report.completed_at = utcnow()
    logger.log_operation("maintenance.cleanup", "done" if not report.errors else "failed", report.metadata)
    return report


async def repair_configuration(adapter: StorageAdapter, actor_tag: Optional[str] = None) -> MaintenanceReport:
    """
    Validate the stored snapshot and repair what can be repaired.

    A missing snapshot is recreated from defaults, a snapshot missing feature
    flags or sections is backfilled, and an unrecoverable one is reset.
    Structural ledger mismatches are reported only.
    """
    report = MaintenanceReport(operation="repair_configuration", started_at=utcnow())

    try:
        health = await adapter.check_database_health()
        report.metadata["schema_version"] = health.version
        if not health.healthy:
            report.issues_found += 1
            report.errors.append(health.error)
            report.recommendations.append("Inspect the storage backend; schema structures do not match the ledger")

        document = await adapter.get_raw_document()
        if document is None:
            report.issues_found += 1
            await adapter.store_config(default_config(), AuditAction.CREATE, actor_tag)
            report.issues_resolved += 1
            report.actions_taken.append("Recreated missing configuration snapshot from defaults")
        elif parse_document(document) is None:
            report.issues_found += 1
            repaired = parse_document(upgrade_legacy_document(document))
            if repaired is not None:
                await adapter.store_config(repaired, AuditAction.MIGRATE, actor_tag)
                report.actions_taken.append("Filled missing fields in configuration snapshot")
            else:
                await adapter.reset_to_defaults(actor_tag)
                report.actions_taken.append("Replaced unrecoverable configuration snapshot with defaults")
            report.issues_resolved += 1
    except ConfigError as e:
        report.errors.append(e.message)

    report.completed_at = utcnow()
    logger.log_operation("maintenance.repair", "done" if not report.errors else "failed", {
        "platform": adapter.platform_tag,
        "issues_found": report.issues_found,
        "issues_resolved": report.issues_resolved,
    })
    return report


async def perform_full_maintenance(adapter: StorageAdapter, keep_days: int = 30) -> List[MaintenanceReport]:
    """Repair first, then clean up the audit trail."""
    return [
        await repair_configuration(adapter),
        await cleanup_old_audit_entries(adapter, keep_days),
    ]
