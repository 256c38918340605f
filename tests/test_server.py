"""Tests for the MCP tool handlers."""
import json

import pytest

from pbx_sync import server as server_module
from pbx_sync.config_store import AsteriskConfigStore
from pbx_sync.db import SQLiteExtensionStore
from pbx_sync.models import ExtensionRecord
from pbx_sync.server import (
    call_tool,
    handle_apply_dialplan,
    handle_auto_sync,
    handle_config_backup,
    handle_config_restore,
    handle_extension_sync_status,
    handle_extension_sync_summary,
    handle_get_audit_log,
    handle_remove_extension,
    handle_show_sections,
    handle_sync_extension,
    list_tools,
)
from pbx_sync.sync_engine import ReconciliationEngine
from pbx_sync.utils.audit_log import ChangeTracker, setup_audit_logging


def _payload(result):
    assert len(result) == 1
    return json.loads(result[0].text)


class TestServerHandlers:
    """Handlers run against a real SQLite database and config directory."""

    @pytest.fixture
    def engine(self, tmp_path, monkeypatch):
        audit_file = setup_audit_logging(str(tmp_path / "audit"))
        monkeypatch.setattr(server_module, "audit_file", audit_file)

        db = SQLiteExtensionStore(tmp_path / "pbx.db")
        db.upsert_extension(ExtensionRecord(number="101", name="Alice", secret="pw"))
        store = AsteriskConfigStore(config_dir=tmp_path / "asterisk", git_enabled=False)
        eng = ReconciliationEngine(db, store, tracker=ChangeTracker(user="test"))

        monkeypatch.setattr(server_module, "engine", eng)
        return eng

    @pytest.mark.asyncio
    async def test_list_tools(self):
        names = {tool.name for tool in await list_tools()}

        assert {
            "extension_sync_status",
            "auto_sync",
            "sync_extension",
            "remove_extension",
            "config_restore",
        } <= names

    @pytest.mark.asyncio
    async def test_status_then_auto_sync(self, engine):
        status = _payload(await handle_extension_sync_status(engine, include_live=False))
        assert status["total"] == 1
        assert status["extensions"][0]["status"] == "database_only"

        result = _payload(await handle_auto_sync(engine))
        assert result["success"] is True
        assert result["database_to_config_synced"] == 1
        assert "Processed: 1 extensions" in result["summary"]

        summary = _payload(await handle_extension_sync_summary(engine))
        assert summary["matched"] == 1
        assert summary["in_sync"] is True

    @pytest.mark.asyncio
    async def test_auto_sync_dry_run(self, engine):
        result = _payload(await handle_auto_sync(engine, dry_run=True))

        assert result["dry_run"] is True
        assert not engine.config_store.pjsip_path.exists()

    @pytest.mark.asyncio
    async def test_status_filter(self, engine):
        status = _payload(await handle_extension_sync_status(engine, False, "match"))

        assert status["total"] == 0
        assert status["filter"] == "match"

    @pytest.mark.asyncio
    async def test_sync_extension_invalid_direction(self, engine):
        result = _payload(await handle_sync_extension(engine, "101", "sideways"))

        assert result["success"] is False
        assert "Invalid direction" in result["error"]

    @pytest.mark.asyncio
    async def test_sync_and_show_sections(self, engine):
        result = _payload(await handle_sync_extension(engine, "101", "db_to_config"))
        assert result["success"] is True

        shown = _payload(await handle_show_sections(engine, "101"))

        assert shown["section_count"] == 3
        auth = next(s for s in shown["sections"] if s["type"] == "auth")
        assert auth["properties"]["password"] == "***"

    @pytest.mark.asyncio
    async def test_remove_extension(self, engine):
        await handle_sync_extension(engine, "101", "db_to_config")

        removed = _payload(await handle_remove_extension(engine, "101", "config"))
        assert removed["sections_removed"] == 3

        deleted = _payload(await handle_remove_extension(engine, "101", "database"))
        assert deleted["success"] is True

        invalid = _payload(await handle_remove_extension(engine, "101", "both"))
        assert invalid["success"] is False

    @pytest.mark.asyncio
    async def test_apply_dialplan_dry_run(self, engine):
        result = _payload(await handle_apply_dialplan(engine, dry_run=True))

        assert "exten => 101,hint,PJSIP/101" in result["dialplan"]
        assert not engine.config_store.dialplan_path.exists()

    @pytest.mark.asyncio
    async def test_apply_dialplan_writes(self, engine):
        result = _payload(await handle_apply_dialplan(engine))

        assert result["success"] is True
        assert result["reloaded"] is False
        assert "PJSIP/101" in engine.config_store.dialplan_path.read_text()

    @pytest.mark.asyncio
    async def test_backup_and_restore(self, engine):
        await handle_sync_extension(engine, "101", "db_to_config")
        backup = _payload(await handle_config_backup(engine, "before-change"))
        assert backup["name"] == "before-change"

        listing = _payload(await handle_config_restore(engine, None))
        assert [b["name"] for b in listing["backups"]] == ["before-change"]

        engine.config_store.pjsip_path.write_text("")
        restored = _payload(await handle_config_restore(engine, "before-change"))
        assert restored["restored"]
        assert "[101]" in engine.config_store.pjsip_path.read_text()

    @pytest.mark.asyncio
    async def test_audit_log(self, engine):
        await handle_sync_extension(engine, "101", "db_to_config")

        log = _payload(await handle_get_audit_log(extension="101"))

        assert log["total_records"] == 1
        assert log["records"][0]["operation"] == "sync_db_to_config"
        assert log["records"][0]["user"] == "test"

    @pytest.mark.asyncio
    async def test_call_tool_dispatch(self, engine):
        result = await call_tool("extension_sync_status", {"include_live": False})
        assert _payload(result)["total"] == 1

        unknown = await call_tool("reboot_pbx", {})
        assert unknown[0].text == "Unknown tool: reboot_pbx"

    def test_main_logs_without_console(self, monkeypatch):
        """The stdio server sets up logging without a console handler."""
        calls = []
        monkeypatch.setattr(server_module, "setup_logging", lambda **kwargs: calls.append(kwargs))
        monkeypatch.setattr(server_module.asyncio, "run", lambda coro: coro.close())

        server_module.main()

        assert calls == [{"console": False}]

    @pytest.mark.asyncio
    async def test_call_tool_reports_errors(self, engine):
        result = await call_tool("sync_extension", {"extension": "999", "direction": "db_to_config"})

        assert result[0].text.startswith("Error:")
        assert "999" in result[0].text
