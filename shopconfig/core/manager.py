"""
Configuration manager - the client-facing resilience layer.

Reads and writes go to the storage adapter first (under a retry policy) and
fall back to the local cache when the backend is unreachable. Storage errors
stop here: callers always get a configuration back, plus the availability
flag and SaveResult status to tell them whether it is durable.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from . import heartbeat
from .auth import AuthCollaborator, actor_tag_from
from .config import get_health_check_interval
from .errors import ConfigError, ErrorCode, translate_storage_error
from .local_cache import LocalConfigCache
from .models import (
    FEATURE_IDS,
    Configuration,
    default_config,
    is_valid_sku,
    resolve_section,
    revalidate,
    section_limit,
    utcnow,
)
from .platform import describe, detect
from .retry import MANAGER_READ_POLICY, MANAGER_WRITE_POLICY, RetryPolicy, best_effort
from .schema import AuditAction, AuditEntry, PlatformInfo
from ..storage.base import StorageAdapter, single_attempt, validation_message
from ..storage.factory import get_adapter
from ..util.logging import logger

HEALTH_TASK_NAME = "config_health_check"


class SaveStatus(str, Enum):
    SYNCED = "synced"                # durable at the backend
    SAVED_LOCALLY = "saved_locally"  # only in the local cache, not yet synced
    FAILED = "failed"


@dataclass
class SaveResult:
    status: SaveStatus
    config: Optional[Configuration] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None

    def __bool__(self):
        return self.status != SaveStatus.FAILED

    @property
    def synced(self) -> bool:
        return self.status == SaveStatus.SYNCED


def _rejected(message: str) -> SaveResult:
    return SaveResult(SaveStatus.FAILED, None, message, ErrorCode.INVALID_CONFIG)


class ConfigurationManager:
    def __init__(self,
                 adapter_provider: Optional[Callable[[], Awaitable[StorageAdapter]]] = None,
                 cache: Optional[LocalConfigCache] = None,
                 auth: Optional[AuthCollaborator] = None,
                 read_policy: RetryPolicy = MANAGER_READ_POLICY,
                 write_policy: RetryPolicy = MANAGER_WRITE_POLICY,
                 health_interval: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._adapter_provider = adapter_provider or get_adapter
        self.cache = cache or LocalConfigCache()
        self.auth = auth
        self.read_policy = read_policy
        self.write_policy = write_policy
        self.health_interval = health_interval if health_interval is not None else get_health_check_interval()
        self._clock = clock

        self._snapshot: Optional[Configuration] = None
        self._platform: Optional[str] = None
        self.server_available: Optional[bool] = None  # None until the first round trip
        self._last_health_check: Optional[float] = None

        self._subscribers: List[Callable[[Configuration], Any]] = []
        self._refresh_lock = threading.Lock()
        self._refreshing = False
        self.refresh_task: Optional[asyncio.Task] = None
        self.refresh_thread: Optional[threading.Thread] = None

    # ---- plumbing ----

    @property
    def platform_tag(self) -> str:
        return self._platform or detect().value

    async def _adapter(self) -> StorageAdapter:
        adapter = await self._adapter_provider()
        self._platform = adapter.platform_tag
        return adapter

    async def _on_adapter(self, operation: Callable[[StorageAdapter], Awaitable[Any]]) -> Any:
        """Run `operation` once against the adapter; retrying is left to the manager policies."""
        try:
            adapter = await self._adapter()
            with single_attempt():
                return await operation(adapter)
        except Exception as e:
            raise translate_storage_error(e, self.platform_tag) from e

    def _mark_available(self):
        self.server_available = True
        self._last_health_check = self._clock()

    def _mark_unavailable(self, error: BaseException, operation: str):
        self.server_available = False
        self._last_health_check = self._clock()
        logger.log_fallback(operation, self.platform_tag, str(error))

    def _accept(self, config: Configuration):
        self._snapshot = config
        self.cache.save(config)

    def latest(self) -> Configuration:
        """Best known configuration without any I/O beyond the local cache."""
        return self._snapshot or self.cache.load() or default_config()

    # ---- reads ----

    async def get_config(self) -> Configuration:
        """
        Server-first read; falls back to the local cache, then defaults.
        An empty backend is seeded with defaults on first access.
        """
        actor = actor_tag_from(self.auth)
        try:
            config = await self.read_policy.execute(
                lambda: self._on_adapter(lambda adapter: adapter.get_or_create_config(actor)),
                label="manager.get_config",
            )
        except Exception as e:
            self._mark_unavailable(e, "get_config")
            return self.cache.load() or self._snapshot or default_config()

        if config is None:
            config = default_config()
        self._accept(config)
        self._mark_available()
        return config

    def get_config_sync(self) -> Configuration:
        """
        Return the best known configuration immediately and refresh it in the background.

        Subscribers are notified with the refreshed value once the background read completes.
        """
        config = self.latest()
        self._schedule_refresh()
        return config

    def _schedule_refresh(self):
        with self._refresh_lock:
            if self._refreshing:
                return
            self._refreshing = True

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self.refresh_task = loop.create_task(self._background_refresh())
        else:
            self.refresh_thread = threading.Thread(
                target=asyncio.run,
                args=(self._background_refresh(),),
                name="shopconfig-refresh",
                daemon=True,
            )
            self.refresh_thread.start()

    async def _background_refresh(self):
        try:
            config = await self.get_config()
            self._notify(config)
        finally:
            with self._refresh_lock:
                self._refreshing = False

    def wait_for_refresh(self, timeout: float = 5.0) -> None:
        """Block until a thread-based background refresh finishes."""
        if self.refresh_thread is not None:
            self.refresh_thread.join(timeout)

    def subscribe(self, callback: Callable[[Configuration], Any]) -> Callable[[], None]:
        """Register for refreshed configurations; returns an unsubscribe callable."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, config: Configuration):
        for callback in list(self._subscribers):
            with best_effort("notify_subscriber", self.platform_tag):
                callback(config)

    def is_feature_enabled(self, feature: str) -> bool:
        return bool(self.latest().upselling.get(feature, False))

    def get_all_features(self) -> Dict[str, bool]:
        return dict(self.latest().upselling)

    # ---- writes ----

    async def _write(self, operation: Callable[[StorageAdapter], Awaitable[Configuration]],
                     local_copy: Configuration, label: str) -> SaveResult:
        try:
            stored = await self.write_policy.execute(lambda: self._on_adapter(operation), label=f"manager.{label}")
        except ConfigError as e:
            if e.code == ErrorCode.INVALID_CONFIG:
                return _rejected(e.message)
            return self._save_locally(local_copy, e, label)
        except Exception as e:
            return self._save_locally(local_copy, e, label)

        self._accept(stored)
        self._mark_available()
        return SaveResult(SaveStatus.SYNCED, stored)

    def _save_locally(self, config: Configuration, error: BaseException, label: str) -> SaveResult:
        self._mark_unavailable(error, label)
        if self.cache.save(config):
            self._snapshot = config
            return SaveResult(SaveStatus.SAVED_LOCALLY, config, str(error))
        return SaveResult(SaveStatus.FAILED, None, str(error), ErrorCode.SAVE_FAILED)

    async def save_config(self, config: Any, auth: Optional[AuthCollaborator] = None) -> SaveResult:
        """Server-first write; falls back to the local cache only. `auth` overrides the manager's collaborator."""
        try:
            validated = revalidate(config)
        except ValidationError as e:
            return _rejected(f"Invalid configuration: {validation_message(e)}")

        previous = self._snapshot.last_updated if self._snapshot else None
        stamped = validated.stamped(previous)
        actor = actor_tag_from(auth or self.auth)
        return await self._write(lambda adapter: adapter.store_config(stamped, None, actor), stamped, "save_config")

    async def reset_to_defaults(self, auth: Optional[AuthCollaborator] = None) -> SaveResult:
        previous = self._snapshot.last_updated if self._snapshot else None
        defaults = default_config().stamped(previous)
        actor = actor_tag_from(auth or self.auth)
        return await self._write(lambda adapter: adapter.reset_to_defaults(actor), defaults, "reset_to_defaults")

    async def update_feature(self, feature: str, enabled: bool) -> SaveResult:
        if feature not in FEATURE_IDS:
            return _rejected(f"Unknown feature: {feature}")
        updated = self.latest().model_copy(deep=True)
        updated.upselling[feature] = bool(enabled)
        return await self.save_config(updated)

    async def add_to_list(self, section: str, sku: str) -> SaveResult:
        try:
            field = resolve_section(section)
        except ValueError as e:
            return _rejected(str(e))
        if not is_valid_sku(sku):
            return _rejected(f"Invalid SKU format: {sku}")

        current = self.latest()
        items = list(getattr(current.product_configuration, field))
        if sku in items:
            return _rejected(f"{sku} is already in {section}")
        limit = section_limit(field)
        if len(items) >= limit:
            return _rejected(f"{section} already holds the maximum of {limit} SKUs")

        updated = current.model_copy(deep=True)
        setattr(updated.product_configuration, field, items + [sku])
        return await self.save_config(updated)

    async def remove_from_list(self, section: str, sku: str) -> SaveResult:
        try:
            field = resolve_section(section)
        except ValueError as e:
            return _rejected(str(e))

        current = self.latest()
        items = list(getattr(current.product_configuration, field))
        if sku not in items:
            return _rejected(f"{sku} is not in {section}")

        updated = current.model_copy(deep=True)
        setattr(updated.product_configuration, field, [item for item in items if item != sku])
        return await self.save_config(updated)

    async def set_primary_reference(self, sku: Optional[str]) -> SaveResult:
        if sku is not None and not is_valid_sku(sku):
            return _rejected(f"Invalid SKU format: {sku}")
        updated = self.latest().model_copy(deep=True)
        updated.product_configuration.primary_reference = sku
        return await self.save_config(updated)

    async def set_api_credentials(self, api_key: Optional[str], account_id: Optional[int],
                                  base_url: Optional[str] = None, country: Optional[str] = None,
                                  validated: bool = False) -> SaveResult:
        """Store catalog credentials; `validated` marks them as checked against the live API."""
        updated = self.latest().model_copy(deep=True)
        credentials = updated.api_credentials
        credentials.api_key = api_key
        credentials.account_id = account_id
        if base_url:
            credentials.base_url = base_url
        if country:
            credentials.country = country
        configured = bool(validated and api_key and account_id is not None)
        credentials.is_configured = configured
        credentials.last_validated = utcnow() if configured else None
        return await self.save_config(updated)

    # ---- health & maintenance ----

    async def check_server_health(self, force: bool = False) -> bool:
        """Probe the backend at most once per health interval unless forced."""
        now = self._clock()
        if (not force and self.server_available is not None and self._last_health_check is not None
                and now - self._last_health_check < self.health_interval):
            return self.server_available

        try:
            healthy = await self._on_adapter(lambda adapter: adapter.check_health())
        except Exception as e:
            self._mark_unavailable(e, "check_health")
            return False

        self.server_available = bool(healthy)
        self._last_health_check = self._clock()
        return self.server_available

    def start_health_monitor(self) -> None:
        """Run the throttled health probe from the heartbeat loop."""
        interval = max(1, int(self.health_interval))
        heartbeat.register_task(HEALTH_TASK_NAME, interval,
                                lambda: asyncio.run(self.check_server_health(force=True)))
        heartbeat.start_background()

    def stop_health_monitor(self) -> None:
        heartbeat.unregister_task(HEALTH_TASK_NAME)

    async def migrate_from_local_cache(self) -> bool:
        """
        Push a purely local configuration to the backend, only when the backend has none.
        Returns True when the local copy was promoted.
        """
        local = self.cache.load()
        if local is None:
            return False

        actor = actor_tag_from(self.auth)

        async def promote(adapter: StorageAdapter):
            if await adapter.get_config() is not None:
                return None
            return await adapter.store_config(local, AuditAction.MIGRATE, actor)

        try:
            stored = await self.write_policy.execute(lambda: self._on_adapter(promote),
                                                     label="manager.migrate_from_local_cache")
        except Exception as e:
            self._mark_unavailable(e, "migrate_from_local_cache")
            return False

        if stored is None:
            logger.info(f"Backend already holds a configuration on {self.platform_tag}; local cache not promoted")
            return False

        self._accept(stored)
        self._mark_available()
        logger.log_storage_operation("migrate_from_local_cache", self.platform_tag)
        return True

    async def get_audit_log(self) -> List[AuditEntry]:
        try:
            return await self.read_policy.execute(
                lambda: self._on_adapter(lambda adapter: adapter.get_audit_log()), label="manager.get_audit_log")
        except Exception as e:
            self._mark_unavailable(e, "get_audit_log")
            return []

    async def get_platform_info(self) -> PlatformInfo:
        try:
            adapter = await self._adapter()
        except Exception as e:
            self._mark_unavailable(e, "get_platform_info")
            return describe(detect())
        return adapter.get_platform_info()


_manager: Optional[ConfigurationManager] = None


def get_config_manager() -> ConfigurationManager:
    """Process-wide manager, created on first use."""
    global _manager
    if _manager is None:
        _manager = ConfigurationManager()
    return _manager


def reset_config_manager() -> None:
    """Drop the process-wide manager (tests)."""
    global _manager
    if _manager is not None:
        _manager.stop_health_monitor()
    _manager = None
