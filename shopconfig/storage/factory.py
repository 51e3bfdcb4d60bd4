"""
Adapter factory - selects, initializes and caches the process-wide storage adapter.
"""

from typing import List, Optional

from .base import StorageAdapter
from .blob_adapter import BlobStorageAdapter
from .file_adapter import FileStorageAdapter
from .sqlite_adapter import SqliteStorageAdapter
from ..core.errors import ConfigError, ErrorCode
from ..core.platform import PlatformType, detect, is_likely_serverless
from ..util.logging import logger

_ADAPTERS = {
    PlatformType.FILE_BASED: FileStorageAdapter,
    PlatformType.RELATIONAL_EMBEDDED: SqliteStorageAdapter,
    PlatformType.BLOB_STORE: BlobStorageAdapter,
}

_adapter: Optional[StorageAdapter] = None


def create_adapter(platform: PlatformType, **kwargs) -> StorageAdapter:
    """Construct (but do not initialize) the adapter for `platform`."""
    try:
        adapter_cls = _ADAPTERS[PlatformType(platform)]
    except (KeyError, ValueError):
        raise ConfigError(f"Unsupported platform: {platform}", ErrorCode.INITIALIZATION_FAILED, str(platform))
    return adapter_cls(**kwargs)


def fallback_chain(platform: PlatformType) -> List[PlatformType]:
    """Platforms to try, in order, when `platform` is selected."""
    chain = [platform]
    if platform == PlatformType.RELATIONAL_EMBEDDED:
        chain.append(PlatformType.FILE_BASED)
    if platform != PlatformType.BLOB_STORE and is_likely_serverless():
        chain.append(PlatformType.BLOB_STORE)
    return chain


async def get_adapter(platform: Optional[PlatformType] = None) -> StorageAdapter:
    """
    Return the singleton adapter, creating it on first use.

    The selected backend is initialized and migrated; if that fails the next
    platform in the fallback chain is tried. Raises ConfigError
    (INITIALIZATION_FAILED) when every candidate fails.
    """
    global _adapter
    if _adapter is not None:
        return _adapter

    selected = PlatformType(platform) if platform else detect()
    last_error: Optional[Exception] = None

    for candidate in fallback_chain(selected):
        adapter = create_adapter(candidate)
        try:
            await adapter.initialize()
            await adapter.migrate()
        except ConfigError as e:
            last_error = e
            logger.log_fallback("initialize", candidate.value, e.message)
            continue

        if candidate != selected:
            logger.warning(f"Storage fell back from {selected.value} to {candidate.value}")
        _adapter = adapter
        logger.log_storage_operation("factory.create", candidate.value)
        return adapter

    raise ConfigError(
        f"No storage backend could be initialized (last error: {last_error})",
        ErrorCode.INITIALIZATION_FAILED,
        selected.value,
    ) from last_error


def get_current_adapter() -> Optional[StorageAdapter]:
    """The cached adapter, if one has been created."""
    return _adapter


def clear_cache() -> None:
    """Forget the cached adapter so the next get_adapter() builds a fresh one."""
    global _adapter
    _adapter = None


async def dispose() -> None:
    """Release the cached adapter's resources and clear the cache."""
    global _adapter
    adapter, _adapter = _adapter, None
    if adapter is not None:
        await adapter.dispose()
