"""Tests for the Asterisk configuration store."""
import os
import stat

import pytest

from pbx_sync.asterisk_config import Section, endpoint_sections
from pbx_sync.config_store import AsteriskConfigStore, BackupInfo, section_name_from_identifier
from pbx_sync.models import ExtensionRecord, TrunkRecord
from pbx_sync.asterisk_config import trunk_sections


class TestSectionNameFromIdentifier:
    """Tests for identifier mapping."""

    def test_prefixes(self):
        assert section_name_from_identifier("Extension 101") == "101"
        assert section_name_from_identifier("Trunk provider") == "provider"
        assert section_name_from_identifier("transport-udp") == "transport-udp"


class TestAsteriskConfigStore:
    """Tests for AsteriskConfigStore file handling."""

    @pytest.fixture
    def store(self, tmp_path):
        """Store over a temporary config directory, git disabled."""
        return AsteriskConfigStore(tmp_path, git_enabled=False)

    def test_read_missing_returns_none(self, store):
        assert store.read_text("pjsip.conf") is None

    def test_write_then_read(self, store):
        store.write_text("pjsip.conf", "[101]\ntype=endpoint\n")

        assert store.read_text("pjsip.conf") == "[101]\ntype=endpoint\n"

    def test_write_leaves_no_temp_files(self, store, tmp_path):
        store.write_text("pjsip.conf", "a\n")
        store.write_text("pjsip.conf", "b\n")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["pjsip.conf"]

    def test_write_preserves_mode(self, store, tmp_path):
        path = tmp_path / "pjsip.conf"
        path.write_text("old\n")
        os.chmod(path, 0o640)

        store.write_text("pjsip.conf", "new\n")

        assert stat.S_IMODE(path.stat().st_mode) == 0o640

    def test_load_missing_document(self, store):
        """A missing pjsip.conf loads as an empty document with a header."""
        doc = store.load_document()

        assert doc.sections == []
        assert doc.header_lines[0].startswith("; pbx-sync")
        assert doc.source_path.endswith("pjsip.conf")

    def test_write_extension_sections_creates_file(self, store):
        record = ExtensionRecord(number="200", secret="pw")

        removed = store.write_extension_sections("200", endpoint_sections(record))

        assert removed == 0
        text = store.read_text("pjsip.conf")
        assert text.startswith("; pbx-sync PJSIP Configuration\n")
        assert "[200]\ntype=endpoint\n" in text

    def test_write_extension_sections_replaces_all_spellings(self, store):
        store.write_text(
            "pjsip.conf",
            "; my header\n\n[transport-udp]\ntype=transport\n\n"
            "[101]\ntype=endpoint\ncontext=old\n\n[auth101]\ntype=auth\npassword=x\n\n"
            "[102]\ntype=endpoint\ncontext=keep\n",
        )

        removed = store.write_extension_sections(
            "101", endpoint_sections(ExtensionRecord(number="101", secret="y"))
        )

        doc = store.load_document()
        assert removed == 2
        assert doc.header_lines == ["; my header"]
        assert doc.section_names() == ["transport-udp", "102", "101"]
        assert not doc.has_section("auth101")
        assert doc.find_section("102", "endpoint").get_property("context") == "keep"

    def test_remove_extension(self, store):
        store.write_extension_sections("101", endpoint_sections(ExtensionRecord(number="101")))

        assert store.remove_extension("101") == 3
        assert store.remove_extension("101") == 0
        assert not store.load_document().has_section("101")

    def test_extension_identifier_must_be_numeric(self, store):
        """Extension writes never touch sections of a non-numeric name."""
        store.write_text("pjsip.conf", "[sales]\ntype=endpoint\ncontext=from-trunk\n")

        with pytest.raises(ValueError, match="not an extension number"):
            store.write_extension_sections("sales", [])
        with pytest.raises(ValueError, match="not an extension number"):
            store.remove_extension("sales")

        assert store.load_document().has_section("sales")

    def test_trunk_sections_round_trip(self, store):
        trunk = TrunkRecord(name="provider", host="sip.example.net", username="u", secret="p")

        store.write_trunk_sections("provider", trunk_sections(trunk))
        store.write_trunk_sections("provider", trunk_sections(trunk))

        doc = store.load_document()
        assert len(doc.find_sections_by_name("provider")) == 4
        assert store.remove_trunk("provider") == 4

    def test_write_sections_bare_name(self, store):
        section = Section.create("global", "global")
        section.set_property("user_agent", "pbx")

        store.write_sections([section], "global")

        assert store.load_document().find_section("global", "global") is not None

    def test_ensure_transports(self, store):
        """Transports are prepended once."""
        store.write_extension_sections("101", endpoint_sections(ExtensionRecord(number="101")))

        assert store.ensure_transports() is True
        assert store.ensure_transports() is False

        doc = store.load_document()
        assert doc.section_names()[:2] == ["transport-udp", "transport-tcp"]
        assert doc.has_section("101")

    def test_write_dialplan_region(self, store):
        store.write_text("extensions.conf", "[general]\nstatic=yes\n")

        store.write_dialplan("[from-internal]\nexten => 101,1,Dial(PJSIP/101)\n")
        store.write_dialplan("[from-internal]\nexten => 102,1,Dial(PJSIP/102)\n")

        text = store.read_text("extensions.conf")
        assert text.startswith("[general]\nstatic=yes\n")
        assert "101" not in text
        assert text.count("; BEGIN pbx-sync managed: from-internal") == 1
        assert store.read_dialplan() == "[from-internal]\nexten => 102,1,Dial(PJSIP/102)\n"

    def test_read_dialplan_missing(self, store):
        assert store.read_dialplan() is None


class TestBackups:
    """Tests for backup create/list/restore."""

    @pytest.fixture
    def store(self, tmp_path):
        store = AsteriskConfigStore(tmp_path, git_enabled=False, backup_keep=2)
        store.write_text("pjsip.conf", "original\n")
        store.write_text("extensions.conf", "dialplan\n")
        return store

    def test_create_and_restore(self, store):
        name = store.create_backup("before-change")
        store.write_text("pjsip.conf", "broken\n")

        restored = store.restore_backup(name)

        assert restored == ["pjsip.conf", "extensions.conf"]
        assert store.read_text("pjsip.conf") == "original\n"

    def test_list_backups(self, store):
        store.create_backup("one")

        backups = store.list_backups()

        assert len(backups) == 1
        assert isinstance(backups[0], BackupInfo)
        assert backups[0].files == ["extensions.conf", "pjsip.conf"]
        assert backups[0].to_dict()["name"] == "one"

    def test_rotation(self, store):
        for name in ("a", "b", "c"):
            store.create_backup(name)

        assert len(store.list_backups()) == 2

    def test_default_name(self, store):
        name = store.create_backup()
        assert name.endswith("Z")

    def test_restore_unknown(self, store):
        with pytest.raises(ValueError, match="not found"):
            store.restore_backup("nope")

    def test_no_history_without_git(self, store):
        assert store.get_config_history() == []
        assert store.diff_revisions() == ""
        assert store.get_file_at_revision("pjsip.conf") is None
