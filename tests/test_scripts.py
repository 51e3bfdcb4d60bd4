"""
Operator scripts: backup, restore and maintenance against the file backend.
"""

import asyncio
import json
import runpy
import sys
from pathlib import Path

import pytest

from shopconfig.core.models import default_config
from shopconfig.storage import dispose, get_adapter

SCRIPTS = Path(__file__).parent.parent / "scripts"


def load_script(name):
    return runpy.run_path(str(SCRIPTS / f"{name}.py"), run_name=f"shopconfig_script_{name}")


def run_script(monkeypatch, name, *argv):
    monkeypatch.setattr(sys, "argv", [f"{name}.py", *argv])
    return load_script(name)["main"]()


def seed_config(**features):
    async def seed():
        adapter = await get_adapter()
        config = default_config()
        config.upselling.update(features)
        config.api_credentials.api_key = "secret-key"
        config.api_credentials.account_id = 4
        await adapter.store_config(config, actor_tag="seed")
        await dispose()

    asyncio.run(seed())


def current_config():
    async def read():
        adapter = await get_adapter()
        try:
            return await adapter.get_config()
        finally:
            await dispose()

    return asyncio.run(read())


@pytest.fixture(autouse=True)
def file_backend(monkeypatch):
    monkeypatch.setenv("SHOPCONFIG_PLATFORM", "fileBased")


class TestBackupScript:
    def test_backup_writes_files(self, monkeypatch, tmp_path, capsys):
        seed_config(youMightAlsoLike=False)
        path = tmp_path / "backups" / "config.json"

        assert run_script(monkeypatch, "backup", str(path), "--verbose") == 0

        assert path.exists()
        assert path.with_suffix(".manifest.json").exists()
        assert "Backup created successfully" in capsys.readouterr().out

    def test_redacted_backup(self, monkeypatch, tmp_path):
        seed_config()
        path = tmp_path / "redacted.json"
        assert run_script(monkeypatch, "backup", str(path), "--redact-credentials") == 0
        content = json.loads(path.read_text())
        assert content["config"]["apiCredentials"]["apiKey"] is None

    def test_empty_store_fails(self, monkeypatch, tmp_path, capsys):
        assert run_script(monkeypatch, "backup", str(tmp_path / "none.json")) == 1
        assert "ERROR" in capsys.readouterr().out


class TestRestoreScript:
    def test_restore_with_force(self, monkeypatch, tmp_path):
        seed_config(youMightAlsoLike=False)
        path = tmp_path / "config.json"
        run_script(monkeypatch, "backup", str(path))
        seed_config(youMightAlsoLike=True)

        assert run_script(monkeypatch, "restore", str(path), "--force", "--actor", "ops") == 0
        assert current_config().upselling["youMightAlsoLike"] is False

    def test_declined_confirmation_changes_nothing(self, monkeypatch, tmp_path):
        seed_config(youMightAlsoLike=False)
        path = tmp_path / "config.json"
        run_script(monkeypatch, "backup", str(path))
        seed_config(youMightAlsoLike=True)

        monkeypatch.setattr("builtins.input", lambda prompt: "no")
        assert run_script(monkeypatch, "restore", str(path)) == 0
        assert current_config().upselling["youMightAlsoLike"] is True

    def test_missing_file(self, monkeypatch, tmp_path):
        assert run_script(monkeypatch, "restore", str(tmp_path / "absent.json"), "--force") == 1


class TestMaintenanceScript:
    def test_repair_as_json(self, monkeypatch, capsys):
        assert run_script(monkeypatch, "maintenance", "--repair", "--json") == 0
        output = json.loads(capsys.readouterr().out)
        assert output["reports"][0]["operation"] == "repair_configuration"
        assert output["reports"][0]["issues_resolved"] == 1

    def test_full_maintenance_text(self, monkeypatch, capsys):
        seed_config()
        assert run_script(monkeypatch, "maintenance", "--full-maintenance") == 0
        out = capsys.readouterr().out
        assert "Operation: repair_configuration" in out
        assert "Operation: cleanup_old_audit_entries" in out

    def test_requires_an_operation(self, monkeypatch):
        with pytest.raises(SystemExit):
            run_script(monkeypatch, "maintenance")
