"""
Adapter factory selection, fallback and caching.
"""

import asyncio

import pytest

from shopconfig.core.errors import ConfigError, ErrorCode
from shopconfig.core.platform import PlatformType
from shopconfig.storage import factory
from shopconfig.storage import FileStorageAdapter, SqliteStorageAdapter


def run(coro):
    return asyncio.run(coro)


class TestFallbackChain:
    def test_relational_falls_back_to_files(self):
        assert factory.fallback_chain(PlatformType.RELATIONAL_EMBEDDED) == [
            PlatformType.RELATIONAL_EMBEDDED, PlatformType.FILE_BASED]

    def test_serverless_adds_blob_store(self, monkeypatch):
        monkeypatch.setenv("VERCEL", "1")
        assert factory.fallback_chain(PlatformType.FILE_BASED) == [
            PlatformType.FILE_BASED, PlatformType.BLOB_STORE]

    def test_unsupported_platform(self):
        with pytest.raises(ConfigError) as exc:
            factory.create_adapter("mainframe")
        assert exc.value.code == ErrorCode.INITIALIZATION_FAILED


class TestGetAdapter:
    def test_detected_platform_is_used_and_cached(self, monkeypatch):
        monkeypatch.setenv("SHOPCONFIG_PLATFORM", "fileBased")
        adapter = run(factory.get_adapter())
        assert isinstance(adapter, FileStorageAdapter)
        assert run(factory.get_adapter()) is adapter
        assert factory.get_current_adapter() is adapter

    def test_sqlite_is_migrated_on_creation(self):
        adapter = run(factory.get_adapter(PlatformType.RELATIONAL_EMBEDDED))
        assert isinstance(adapter, SqliteStorageAdapter)
        assert run(adapter.check_database_health()).healthy

    def test_failed_backend_falls_back(self, monkeypatch):
        async def refuse(self):
            raise ConfigError("cannot open database", ErrorCode.INITIALIZATION_FAILED, "relationalEmbedded")

        monkeypatch.setattr(SqliteStorageAdapter, "initialize", refuse)
        adapter = run(factory.get_adapter(PlatformType.RELATIONAL_EMBEDDED))
        assert isinstance(adapter, FileStorageAdapter)

    def test_all_backends_failing_raises(self, monkeypatch):
        async def refuse(self):
            raise ConfigError("nope", ErrorCode.INITIALIZATION_FAILED, self.platform_tag)

        monkeypatch.setattr(SqliteStorageAdapter, "initialize", refuse)
        monkeypatch.setattr(FileStorageAdapter, "initialize", refuse)
        with pytest.raises(ConfigError) as exc:
            run(factory.get_adapter(PlatformType.RELATIONAL_EMBEDDED))
        assert exc.value.code == ErrorCode.INITIALIZATION_FAILED
        assert factory.get_current_adapter() is None

    def test_dispose_clears_cache(self, monkeypatch):
        monkeypatch.setenv("SHOPCONFIG_PLATFORM", "fileBased")
        first = run(factory.get_adapter())
        run(factory.dispose())
        assert factory.get_current_adapter() is None
        assert run(factory.get_adapter()) is not first
