"""
Client-side cache and the auth collaborator used to tag audit entries.
"""

from shopconfig.core.auth import HeaderAuth, actor_tag_from
from shopconfig.core.local_cache import LocalConfigCache
from shopconfig.core.models import default_config


class TestLocalConfigCache:
    def test_round_trip(self, tmp_path):
        cache = LocalConfigCache(tmp_path / "cache.json")
        config = default_config()
        config.upselling["youMightAlsoLike"] = False

        assert cache.save(config) is True
        assert cache.exists()
        assert cache.load() == config

    def test_absent_cache(self, tmp_path):
        assert LocalConfigCache(tmp_path / "missing.json").load() is None

    def test_corrupt_cache_is_ignored(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        assert LocalConfigCache(path).load() is None

    def test_invalid_document_is_ignored(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text('{"upselling": {"youMightAlsoLike": true}}')
        assert LocalConfigCache(path).load() is None

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        assert LocalConfigCache(blocker / "cache.json").save(default_config()) is False

    def test_clear(self, tmp_path):
        cache = LocalConfigCache(tmp_path / "cache.json")
        cache.save(default_config())
        cache.clear()
        cache.clear()
        assert not cache.exists()

    def test_default_location_follows_environment(self, tmp_path):
        assert LocalConfigCache().path == tmp_path / "cache" / "config-cache.json"


class BrokenAuth:
    def validate_session(self):
        raise RuntimeError("session store down")

    def get_auth_headers(self):
        return {}


class TestAuth:
    def test_actor_from_header(self):
        assert actor_tag_from(HeaderAuth({"x-admin-user": "alice"})) == "alice"

    def test_no_session(self):
        auth = HeaderAuth({})
        assert auth.validate_session() is False
        assert actor_tag_from(auth) is None

    def test_no_collaborator(self):
        assert actor_tag_from(None) is None

    def test_failing_collaborator_leaves_entry_untagged(self):
        assert actor_tag_from(BrokenAuth()) is None
