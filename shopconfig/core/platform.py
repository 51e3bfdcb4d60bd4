"""
Platform detection - maps runtime environment signals to a storage platform tag.
"""

import importlib.util
import os
from enum import Enum
from functools import lru_cache
from typing import Mapping, Optional

from .config import get_platform_override
from .schema import PlatformInfo


class PlatformType(str, Enum):
    FILE_BASED = "fileBased"
    RELATIONAL_EMBEDDED = "relationalEmbedded"
    BLOB_STORE = "blobStore"


# Variables set by serverless hosts where the local filesystem is ephemeral
SERVERLESS_INDICATORS = (
    "NETLIFY",
    "NETLIFY_DEV",
    "VERCEL",
    "VERCEL_ENV",
    "AWS_LAMBDA_FUNCTION_NAME",
    "LAMBDA_TASK_ROOT",
    "K_SERVICE",
)

_PLATFORM_INFO = {
    PlatformType.FILE_BASED: PlatformInfo(
        type=PlatformType.FILE_BASED.value,
        display_name="File Storage",
        supports_file_system=True,
        storage_kind="file",
    ),
    PlatformType.RELATIONAL_EMBEDDED: PlatformInfo(
        type=PlatformType.RELATIONAL_EMBEDDED.value,
        display_name="SQLite Database",
        supports_file_system=True,
        storage_kind="database",
    ),
    PlatformType.BLOB_STORE: PlatformInfo(
        type=PlatformType.BLOB_STORE.value,
        display_name="Blob Store",
        supports_file_system=False,
        storage_kind="blob",
    ),
}


def sqlite_available() -> bool:
    """True when the interpreter was built with the sqlite3 extension."""
    return importlib.util.find_spec("_sqlite3") is not None


def is_likely_serverless(environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return any(env.get(name) for name in SERVERLESS_INDICATORS)


def detect_from_environment(environ: Mapping[str, str], has_sqlite: bool = True) -> PlatformType:
    """
    Pure platform selection from environment signals.

    Precedence: explicit SHOPCONFIG_PLATFORM, then serverless hosts (blob store),
    then the embedded database when sqlite3 is importable, else plain files.
    """
    override = (environ.get("SHOPCONFIG_PLATFORM") or "").strip()
    if override:
        try:
            return PlatformType(override)
        except ValueError:
            pass

    if is_likely_serverless(environ):
        return PlatformType.BLOB_STORE

    if has_sqlite:
        return PlatformType.RELATIONAL_EMBEDDED

    return PlatformType.FILE_BASED


@lru_cache(maxsize=None)
def detect() -> PlatformType:
    """Detect the platform once per process. Tests reset with `detect.cache_clear()`."""
    platform = detect_from_environment(os.environ, has_sqlite=sqlite_available())
    override = get_platform_override()
    if override and override != platform.value:
        from ..util.logging import logger
        logger.warning(f"Ignoring unknown SHOPCONFIG_PLATFORM '{override}', using {platform.value}")
    return platform


def describe(platform: Optional[PlatformType] = None) -> PlatformInfo:
    """Static capability metadata for the given or auto-detected platform."""
    return _PLATFORM_INFO[PlatformType(platform) if platform else detect()]
