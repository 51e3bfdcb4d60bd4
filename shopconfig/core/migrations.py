"""
Versioned migrations applied against a per-backend ledger.

Each backend supplies a MigrationLedger that knows how to run one step and
record it as a single unit, and how to list the structures that exist now.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Set, Tuple

from .errors import translate_storage_error
from .schema import HealthReport, MigrationLedgerEntry
from ..util.logging import logger


@dataclass(frozen=True)
class MigrationStep:
    version: int
    description: str
    apply: Callable[[Any], Any]
    creates: Tuple[str, ...] = ()  # structure names present once this step has run


class MigrationLedger(ABC):
    """Backend-specific record of applied migration versions."""

    platform: str = ""

    @abstractmethod
    def applied(self) -> List[MigrationLedgerEntry]:
        """Ledger rows in ascending version order; empty when no ledger exists."""

    @abstractmethod
    def apply_step(self, step: MigrationStep) -> None:
        """Run the step and record its ledger row atomically."""

    @abstractmethod
    def existing_structures(self) -> Set[str]:
        """Names of the structures currently present in the backend."""


class MigrationManager:
    def __init__(self, ledger: MigrationLedger, steps: Iterable[MigrationStep]):
        self.ledger = ledger
        self.steps = sorted(steps, key=lambda s: s.version)
        versions = [s.version for s in self.steps]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions: {versions}")
        if any(v < 1 for v in versions):
            raise ValueError("Migration versions start at 1")

    @property
    def latest_version(self) -> int:
        return self.steps[-1].version if self.steps else 0

    def get_applied_migrations(self) -> List[MigrationLedgerEntry]:
        return self.ledger.applied()

    def current_version(self) -> int:
        entries = self.ledger.applied()
        return max((e.version for e in entries), default=0)

    def pending(self) -> List[MigrationStep]:
        current = self.current_version()
        return [s for s in self.steps if s.version > current]

    def run(self) -> List[int]:
        """
        Apply pending steps in ascending order.

        Stops at the first failure; the failed step is not recorded, so the
        ledger stays at the last successful version. Returns applied versions.
        """
        applied = []
        for step in self.pending():
            try:
                self.ledger.apply_step(step)
            except Exception as e:
                logger.log_migration(self.ledger.platform, step.version, step.description, status="failed")
                raise translate_storage_error(e, self.ledger.platform) from e
            logger.log_migration(self.ledger.platform, step.version, step.description)
            applied.append(step.version)
        return applied

    def check_database_health(self) -> HealthReport:
        """Cross-check that every structure implied by the ledger version exists. Never repairs."""
        try:
            version = self.current_version()
        except Exception as e:
            return HealthReport(healthy=False, version=0, error=f"Ledger unreadable: {e}")

        if version > self.latest_version:
            return HealthReport(
                healthy=False,
                version=version,
                error=f"Ledger version {version} is newer than known migrations ({self.latest_version})",
            )

        expected = set()
        for step in self.steps:
            if step.version <= version:
                expected.update(step.creates)

        try:
            existing = self.ledger.existing_structures()
        except Exception as e:
            return HealthReport(healthy=False, version=version, error=f"Structure check failed: {e}")

        missing = sorted(expected - existing)
        if missing:
            return HealthReport(
                healthy=False,
                version=version,
                error=f"Schema version {version} expects missing structures: {', '.join(missing)}",
            )
        return HealthReport(healthy=True, version=version)
