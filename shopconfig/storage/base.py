"""
Storage adapter contract shared by the file, SQLite and blob store backends.

Public operations are coroutines; each backend implements small synchronous
hooks that run in a worker thread via asyncio.to_thread.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import TypeAdapter, ValidationError

from ..core.config import AUDIT_LOG_LIMIT
from ..core.errors import ConfigError, ErrorCode, translate_storage_error
from ..core.migrations import MigrationManager
from ..core.models import Configuration, default_config, parse_document, revalidate, utcnow
from ..core.platform import PlatformType, describe
from ..core.retry import RetryPolicy, best_effort, policy_for_platform
from ..core.schema import AuditAction, AuditEntry, HealthReport, MigrationLedgerEntry, PlatformInfo
from ..util.logging import logger

T = TypeVar("T")

_STAMP = TypeAdapter(datetime)

_single_attempt: ContextVar[bool] = ContextVar("shopconfig_single_attempt", default=False)


@contextmanager
def single_attempt():
    """
    Adapter calls made inside this block skip the adapter retry policy and try once.
    The config manager wraps its calls in it so only its own policy retries.
    """
    token = _single_attempt.set(True)
    try:
        yield
    finally:
        _single_attempt.reset(token)


def validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", str(error))


def parse_stamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        stamp = _STAMP.validate_python(value)
    except ValidationError:
        return None
    return stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)


class StorageAdapter(ABC):
    """Uniform contract over one storage backend."""

    platform: PlatformType

    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        self.retry_policy = retry_policy or policy_for_platform(self.platform.value)
        self._initialized = False

    # ---- backend hooks (synchronous, run in a worker thread) ----

    @abstractmethod
    def _initialize(self) -> None:
        """Create files/tables/blob if absent. Must be idempotent."""

    @abstractmethod
    def _migration_manager(self) -> MigrationManager:
        ...

    @abstractmethod
    def _read_document(self) -> Optional[Dict[str, Any]]:
        """Raw stored snapshot, None when nothing has been written."""

    @abstractmethod
    def _write_document(self, document: Dict[str, Any]) -> None:
        """Replace the stored snapshot atomically."""

    @abstractmethod
    def _append_audit(self, action: str, snapshot: str, timestamp: datetime, actor_tag: Optional[str]) -> None:
        ...

    @abstractmethod
    def _read_audit(self, limit: int) -> List[AuditEntry]:
        ...

    @abstractmethod
    def _prune_audit(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    def _probe(self) -> None:
        """Cheap round trip; raises when the backend is unusable."""

    @abstractmethod
    def _stats(self) -> Dict[str, Any]:
        ...

    def _dispose(self) -> None:
        pass

    # ---- shared plumbing ----

    @property
    def platform_tag(self) -> str:
        return self.platform.value

    async def _call(self, label: str, func: Callable[..., T], *args) -> T:
        async def attempt():
            try:
                return await asyncio.to_thread(func, *args)
            except ConfigError:
                raise
            except Exception as e:
                raise translate_storage_error(e, self.platform_tag) from e

        if _single_attempt.get():
            return await attempt()
        return await self.retry_policy.execute(attempt, label=f"{self.platform_tag}.{label}")

    async def _ensure_initialized(self):
        if not self._initialized:
            await self.initialize()

    def validate(self, config: Any) -> Configuration:
        """Validated copy of `config`; raises ConfigError(INVALID_CONFIG)."""
        try:
            return revalidate(config)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {validation_message(e)}",
                              ErrorCode.INVALID_CONFIG, self.platform_tag) from e

    # ---- contract ----

    async def initialize(self) -> None:
        if self._initialized:
            return
        try:
            await asyncio.to_thread(self._initialize)
        except ConfigError as e:
            if e.code != ErrorCode.INITIALIZATION_FAILED:
                raise ConfigError(e.message, ErrorCode.INITIALIZATION_FAILED, self.platform_tag) from e
            raise
        except Exception as e:
            raise ConfigError(f"Failed to initialize {self.platform_tag} storage: {e}",
                              ErrorCode.INITIALIZATION_FAILED, self.platform_tag) from e
        self._initialized = True
        logger.log_storage_operation("initialize", self.platform_tag)

    async def migrate(self) -> List[int]:
        await self._ensure_initialized()
        manager = self._migration_manager()
        applied = await asyncio.to_thread(manager.run)
        if applied:
            logger.log_storage_operation("migrate", self.platform_tag, details={"applied": applied})
        return applied

    async def get_applied_migrations(self) -> List[MigrationLedgerEntry]:
        await self._ensure_initialized()
        return await self._call("get_applied_migrations", self._migration_manager().get_applied_migrations)

    async def check_database_health(self) -> HealthReport:
        await self._ensure_initialized()
        return await asyncio.to_thread(self._migration_manager().check_database_health)

    async def get_raw_document(self) -> Optional[Dict[str, Any]]:
        """Stored snapshot without validation (maintenance and repair)."""
        await self._ensure_initialized()
        return await self._call("get_raw_document", self._read_document)

    async def get_config(self) -> Optional[Configuration]:
        await self._ensure_initialized()
        document = await self._call("get_config", self._read_document)
        if document is None:
            return None
        config = parse_document(document)
        if config is None:
            logger.log_storage_operation("get_config", self.platform_tag, "invalid",
                                         {"reason": "stored document failed validation"})
        return config

    async def get_or_create_config(self, actor_tag: Optional[str] = None) -> Optional[Configuration]:
        """
        Stored configuration; an empty backend is seeded with defaults and a CREATE
        audit entry. Returns None only when the stored document fails validation.
        """
        await self._ensure_initialized()
        document = await self._call("get_config", self._read_document)
        if document is None:
            logger.log_storage_operation("get_config", self.platform_tag, "empty", {"seeding": "defaults"})
            return await self.store_config(default_config(), AuditAction.CREATE, actor_tag)
        config = parse_document(document)
        if config is None:
            logger.log_storage_operation("get_config", self.platform_tag, "invalid",
                                         {"reason": "stored document failed validation"})
        return config

    def _store(self, config: Configuration) -> Tuple[Configuration, bool]:
        previous = self._read_document()
        stamped = config.stamped(parse_stamp(previous.get("lastUpdated")) if previous else None)
        self._write_document(stamped.to_document())
        return stamped, previous is None

    async def store_config(self, config: Any, action: Optional[AuditAction] = None,
                           actor_tag: Optional[str] = None) -> Configuration:
        """Validate, stamp, persist and audit; returns the stamped snapshot."""
        validated = self.validate(config)
        await self._ensure_initialized()
        stamped, created = await self._call("save_config", self._store, validated)
        if action is None:
            action = AuditAction.CREATE if created else AuditAction.UPDATE
        logger.log_storage_operation("save_config", self.platform_tag, details={"action": action.value})
        await self.log_config_change(action, stamped, actor_tag)
        return stamped

    async def save_config(self, config: Any, action: Optional[AuditAction] = None,
                          actor_tag: Optional[str] = None) -> bool:
        await self.store_config(config, action, actor_tag)
        return True

    async def reset_to_defaults(self, actor_tag: Optional[str] = None) -> Configuration:
        stamped = await self.store_config(default_config(), actor_tag=actor_tag)
        await self.log_config_change(AuditAction.RESET, stamped, actor_tag)
        return stamped

    async def log_config_change(self, action: AuditAction, config: Configuration,
                                actor_tag: Optional[str] = None) -> None:
        """Append an audit entry. Failures are logged and never raised."""
        action = AuditAction(action)
        with best_effort("audit", self.platform_tag):
            await asyncio.to_thread(self._append_audit, action.value, config.to_json(), utcnow(), actor_tag)
            logger.log_audit_event(action.value, self.platform_tag, actor_tag)

    async def get_audit_log(self) -> List[AuditEntry]:
        await self._ensure_initialized()
        return await self._call("get_audit_log", self._read_audit, AUDIT_LOG_LIMIT)

    async def prune_audit_entries(self, cutoff: datetime) -> int:
        """Delete audit entries older than `cutoff`; returns how many went."""
        await self._ensure_initialized()
        removed = await self._call("prune_audit_entries", self._prune_audit, cutoff)
        logger.log_storage_operation("prune_audit_entries", self.platform_tag, details={"removed": removed})
        return removed

    async def check_health(self) -> bool:
        try:
            await self._ensure_initialized()
            await asyncio.to_thread(self._probe)
            return True
        except Exception as e:
            logger.log_storage_operation("check_health", self.platform_tag, "unhealthy", {"error": str(e)[:200]})
            return False

    async def get_storage_stats(self) -> Dict[str, Any]:
        await self._ensure_initialized()
        stats = await self._call("get_storage_stats", self._stats)
        stats["platform"] = self.platform_tag
        return stats

    def get_platform_info(self) -> PlatformInfo:
        return describe(self.platform)

    async def dispose(self) -> None:
        await asyncio.to_thread(self._dispose)
        self._initialized = False
