"""
Shared fixtures: isolated data directories, an in-memory blob store and
zero-delay retry policies.
"""

from typing import Dict, Optional

import pytest

from shopconfig.catalog import reset_catalog_client
from shopconfig.core import heartbeat
from shopconfig.core.manager import reset_config_manager
from shopconfig.core.platform import detect
from shopconfig.core.retry import BLOB_POLICY, FILE_POLICY, RELATIONAL_POLICY
from shopconfig.storage import BlobStorageAdapter, BlobStore, FileStorageAdapter, SqliteStorageAdapter
from shopconfig.storage import clear_cache


class MemoryBlobStore(BlobStore):
    """
    Blob store kept in a dict. `fail_with` makes calls raise; with `failures_left`
    set, only that many calls fail before the store recovers.
    """

    def __init__(self):
        self.blobs: Dict[str, str] = {}
        self.reads = 0
        self.writes = 0
        self.fail_with: Optional[Exception] = None
        self.failures_left: Optional[int] = None

    def _maybe_fail(self):
        if self.fail_with is None:
            return
        if self.failures_left is None:
            raise self.fail_with
        if self.failures_left > 0:
            self.failures_left -= 1
            raise self.fail_with

    def read(self, name):
        self.reads += 1
        self._maybe_fail()
        return self.blobs.get(name)

    def write(self, name, content):
        self.writes += 1
        self._maybe_fail()
        self.blobs[name] = content


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point every path at tmp_path and reset process-wide singletons."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CONFIG_CACHE_PATH", str(tmp_path / "cache" / "config-cache.json"))
    monkeypatch.delenv("DATABASE_PATH", raising=False)
    monkeypatch.delenv("SHOPCONFIG_PLATFORM", raising=False)
    for name in ("NETLIFY", "NETLIFY_DEV", "VERCEL", "VERCEL_ENV", "AWS_LAMBDA_FUNCTION_NAME",
                 "LAMBDA_TASK_ROOT", "K_SERVICE", "GITHUB_GIST_ID", "GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    detect.cache_clear()
    clear_cache()
    reset_config_manager()
    reset_catalog_client()
    heartbeat.tasks.clear()
    yield
    heartbeat.stop()
    heartbeat.tasks.clear()
    reset_catalog_client()
    reset_config_manager()
    clear_cache()
    detect.cache_clear()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def file_adapter(tmp_path):
    return FileStorageAdapter(tmp_path / "files", retry_policy=FILE_POLICY.with_delays())


@pytest.fixture
def sqlite_adapter(tmp_path):
    return SqliteStorageAdapter(tmp_path / "db" / "admin.db", retry_policy=RELATIONAL_POLICY.with_delays())


@pytest.fixture
def blob_adapter(blob_store):
    return BlobStorageAdapter(blob_store, "admin-config.json", retry_policy=BLOB_POLICY.with_delays())


@pytest.fixture(params=["file", "sqlite", "blob"])
def adapter(request, tmp_path, blob_store):
    """Each backend in turn, behind the same contract."""
    if request.param == "file":
        return FileStorageAdapter(tmp_path / "files", retry_policy=FILE_POLICY.with_delays())
    if request.param == "sqlite":
        return SqliteStorageAdapter(tmp_path / "db" / "admin.db", retry_policy=RELATIONAL_POLICY.with_delays())
    return BlobStorageAdapter(blob_store, "admin-config.json", retry_policy=BLOB_POLICY.with_delays())
