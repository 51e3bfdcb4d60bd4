"""
Environment-driven settings for storage backends, the local cache and the catalog client.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Storage paths
DATA_DIR = os.getenv("DATA_DIR", "./data")
CONFIG_FILE_NAME = "admin-config.json"
AUDIT_FILE_NAME = "config-audit.json"
SCHEMA_FILE_NAME = "schema-version.json"

# Blob store (Gist-backed) configuration
BLOB_STORE_NAME = os.getenv("BLOB_STORE_NAME", "admin-config")
BLOB_REQUEST_TIMEOUT_SEC = int(os.getenv("BLOB_REQUEST_TIMEOUT_SEC", "15"))

# Catalog API configuration
DEFAULT_CATALOG_BASE_URL = "https://public.api.taager.com"
DEFAULT_CATALOG_COUNTRY = "SAU"
CATALOG_CACHE_TTL_SEC = int(os.getenv("CATALOG_CACHE_TTL_SEC", "3600"))  # 1 hour
CATALOG_CACHE_MAX_ENTRIES = int(os.getenv("CATALOG_CACHE_MAX_ENTRIES", "1000"))
CATALOG_CACHE_SWEEP_SEC = int(os.getenv("CATALOG_CACHE_SWEEP_SEC", "900"))  # 15 minutes
CATALOG_REQUEST_TIMEOUT_SEC = int(os.getenv("CATALOG_REQUEST_TIMEOUT_SEC", "15"))

# Client resilience layer
HEALTH_CHECK_INTERVAL_SEC = int(os.getenv("HEALTH_CHECK_INTERVAL_SEC", "30"))

# Audit trail ring buffer capacity (fixed)
AUDIT_LOG_LIMIT = 100

VALID_PLATFORMS = ("fileBased", "relationalEmbedded", "blobStore")

# Version string
VERSION = "1.2.0"


def get_data_dir() -> Path:
    """Directory holding the file backend documents and the SQLite database."""
    return Path(os.getenv("DATA_DIR", DATA_DIR))


def get_database_path() -> Path:
    """SQLite database location (DATABASE_PATH overrides DATA_DIR/admin.db)."""
    explicit = os.getenv("DATABASE_PATH")
    if explicit:
        return Path(explicit)
    return get_data_dir() / "admin.db"


def get_cache_path() -> Path:
    """Client-side cache file that survives process restarts."""
    explicit = os.getenv("CONFIG_CACHE_PATH")
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".cache" / "shopconfig" / "config-cache.json"


def get_platform_override() -> str:
    """Explicit platform tag, empty string when unset."""
    return os.getenv("SHOPCONFIG_PLATFORM", "").strip()


def get_blob_store_name() -> str:
    return os.getenv("BLOB_STORE_NAME", BLOB_STORE_NAME)


def get_gist_credentials():
    """(gist_id, token) for the Gist-backed blob store; either may be None."""
    return os.getenv("GITHUB_GIST_ID"), os.getenv("GITHUB_TOKEN")


def get_catalog_base_url() -> str:
    return os.getenv("CATALOG_API_BASE_URL", DEFAULT_CATALOG_BASE_URL)


def get_catalog_country() -> str:
    return os.getenv("CATALOG_COUNTRY", DEFAULT_CATALOG_COUNTRY)


def get_health_check_interval() -> int:
    return int(os.getenv("HEALTH_CHECK_INTERVAL_SEC", str(HEALTH_CHECK_INTERVAL_SEC)))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def validate_config() -> List[str]:
    """Return a list of configuration problems; empty when the environment is usable."""
    issues = []

    override = get_platform_override()
    if override and override not in VALID_PLATFORMS:
        issues.append(f"SHOPCONFIG_PLATFORM must be one of {VALID_PLATFORMS}, got '{override}'")

    gist_id, token = get_gist_credentials()
    if bool(gist_id) != bool(token):
        issues.append("GITHUB_GIST_ID and GITHUB_TOKEN must be set together")

    for name in ("CATALOG_CACHE_TTL_SEC", "CATALOG_CACHE_MAX_ENTRIES", "CATALOG_CACHE_SWEEP_SEC",
                 "CATALOG_REQUEST_TIMEOUT_SEC", "HEALTH_CHECK_INTERVAL_SEC"):
        raw = os.getenv(name)
        if raw is None:
            continue
        try:
            if int(raw) < 1:
                issues.append(f"{name} must be >= 1: {raw}")
        except ValueError:
            issues.append(f"{name} must be an integer: {raw}")

    base_url = get_catalog_base_url()
    if not base_url.startswith(("http://", "https://")):
        issues.append(f"CATALOG_API_BASE_URL must be an http(s) URL: {base_url}")

    return issues
