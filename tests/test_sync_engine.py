"""Tests for the extension reconciliation engine."""
from typing import Optional

import pytest

from pbx_sync.asterisk_config import ConfigDocument
from pbx_sync.config_store import AsteriskConfigStore
from pbx_sync.db import ExtensionStore
from pbx_sync.models import ExtensionRecord
from pbx_sync.sync_engine import (
    AutoSyncResult,
    DerivedExtension,
    ExtensionNotFoundError,
    ReconciliationEngine,
    ReloadError,
    SyncConflict,
    SyncDirection,
    SyncError,
    SyncStatus,
    classify,
    derive_extensions,
    find_differences,
    sort_key,
    summarize,
    summarize_sync,
)


SCENARIO_A = (
    "[101]\ntype=endpoint\ncontext=from-internal\n\n"
    "[101]\ntype=auth\npassword=secret\n\n"
    "[101]\ntype=aor\nmax_contacts=1\n"
)


class FakeExtensionStore(ExtensionStore):
    """In-memory extension registry."""

    def __init__(self, records: Optional[list[ExtensionRecord]] = None):
        self.records = {r.number: r for r in records or []}
        self.fail_upsert: set[str] = set()
        self.upserts = 0

    def list_extensions(self) -> list[ExtensionRecord]:
        return list(self.records.values())

    def get_extension(self, number: str) -> Optional[ExtensionRecord]:
        return self.records.get(number)

    def upsert_extension(self, record: ExtensionRecord) -> None:
        if record.number in self.fail_upsert:
            raise RuntimeError("disk full")
        self.upserts += 1
        self.records[record.number] = record

    def delete_extension(self, number: str) -> bool:
        return self.records.pop(number, None) is not None


class FakeTelephony:
    """Counts reloads; optionally fails them."""

    def __init__(self, registrations: Optional[dict[str, bool]] = None, fail_reload: bool = False):
        self.reloads = 0
        self.fail_reload = fail_reload
        self._registrations = registrations or {}

    def reload(self) -> str:
        if self.fail_reload:
            raise RuntimeError("Unable to connect to remote asterisk")
        self.reloads += 1
        return ""

    def registrations(self) -> dict[str, bool]:
        return dict(self._registrations)


class RecordingTracker:
    """Collects audit calls."""

    def __init__(self):
        self.calls = []

    def log_change(self, **kwargs):
        self.calls.append(kwargs)


@pytest.fixture
def config_store(tmp_path):
    return AsteriskConfigStore(tmp_path, git_enabled=False)


def _write_pjsip(store: AsteriskConfigStore, text: str) -> None:
    store.write_text(store.pjsip_file, text)


class TestDeriveExtensions:
    """Tests for derive_extensions."""

    def test_scenario_three_sections(self):
        """endpoint/auth/aor fold into one derived extension."""
        derived = derive_extensions(ConfigDocument.parse(SCENARIO_A))

        assert len(derived) == 1
        ext = derived[0]
        assert ext.number == "101"
        assert ext.context == "from-internal"
        assert ext.secret == "secret"
        assert ext.max_contacts == 1

    def test_commented_section_ignored(self):
        """Disabled sections never contribute."""
        doc = ConfigDocument.parse(";[101]\n;type=endpoint\n;context=from-internal\n")

        assert doc.sections[0].commented
        assert derive_extensions(doc) == []

    def test_alternate_spellings_merge(self):
        """[101], [101-auth] and [aor101] are one extension."""
        doc = ConfigDocument.parse(
            "[101]\ntype=endpoint\ncontext=from-internal\n\n"
            "[101-auth]\ntype=auth\npassword=pw\n\n"
            "[aor101]\ntype=aor\nmax_contacts=3\nqualify_frequency=30\n"
        )

        (ext,) = derive_extensions(doc)

        assert ext.secret == "pw"
        assert ext.max_contacts == 3
        assert ext.qualify_frequency == 30

    def test_defaults_when_aor_missing(self):
        (ext,) = derive_extensions(ConfigDocument.parse("[101]\ntype=endpoint\ncontext=x\n"))

        assert ext.max_contacts == 1
        assert ext.qualify_frequency == 60
        assert ext.direct_media == ""

    def test_without_context_not_reported(self):
        """An auth section alone does not make an extension."""
        doc = ConfigDocument.parse("[101]\ntype=auth\npassword=pw\n")

        assert derive_extensions(doc) == []

    def test_other_types_ignored(self):
        doc = ConfigDocument.parse(
            "[transport-udp]\ntype=transport\n\n[101]\ntype=identify\nmatch=1.2.3.4\n"
        )

        assert derive_extensions(doc) == []

    def test_bad_integer_keeps_default(self):
        (ext,) = derive_extensions(ConfigDocument.parse(
            "[101]\ntype=endpoint\ncontext=x\n\n[101]\ntype=aor\nmax_contacts=lots\n"
        ))

        assert ext.max_contacts == 1

    def test_codecs_deduplicated(self):
        (ext,) = derive_extensions(ConfigDocument.parse(
            "[101]\ntype=endpoint\ncontext=x\nallow=ulaw\nallow=alaw,ulaw\n"
        ))

        assert ext.codecs == ["ulaw", "alaw"]


class TestDiff:
    """Tests for find_differences and classify."""

    def test_scenario_context_mismatch(self):
        """Only the context differs, giving exactly one difference."""
        db = [ExtensionRecord(number="100", context="sales", max_contacts=2)]
        config = [DerivedExtension(number="100", context="from-internal", max_contacts=2)]

        (info,) = classify(db, config)

        assert info.status == SyncStatus.MISMATCH
        assert info.differences == ["Context: DB=sales, Asterisk=from-internal"]

    def test_defaults_compared_effective(self):
        """An unset database field compares as its default."""
        db = ExtensionRecord(number="100")
        config = DerivedExtension(number="100", context="from-internal", transport="transport-udp")

        assert find_differences(db, config) == []

    def test_transport_only_compared_when_set(self):
        db = ExtensionRecord(number="100", transport="transport-tcp")

        assert find_differences(db, DerivedExtension(number="100", context="from-internal")) == []
        assert find_differences(
            db, DerivedExtension(number="100", context="from-internal", transport="transport-udp")
        ) == ["Transport: DB=transport-tcp, Asterisk=transport-udp"]

    def test_all_difference_kinds(self):
        db = ExtensionRecord(number="1", context="a", transport="t1", max_contacts=1, direct_media="no")
        config = DerivedExtension(
            number="1", context="b", transport="t2", max_contacts=2, direct_media="yes"
        )

        assert find_differences(db, config) == [
            "Context: DB=a, Asterisk=b",
            "Transport: DB=t1, Asterisk=t2",
            "Max Contacts: DB=1, Asterisk=2",
            "Direct Media: DB=no, Asterisk=yes",
        ]

    def test_classification_complete_and_sorted(self):
        """Each number appears once, numeric order first."""
        db = [ExtensionRecord(number=n) for n in ("1000", "20", "abc", "300")]
        config = [
            DerivedExtension(number="20", context="from-internal"),
            DerivedExtension(number="5", context="from-internal"),
            DerivedExtension(number="300", context="other"),
        ]

        infos = classify(db, config)

        assert [i.number for i in infos] == ["5", "20", "300", "1000", "abc"]
        statuses = {i.number: i.status for i in infos}
        assert statuses == {
            "5": SyncStatus.CONFIG_ONLY,
            "20": SyncStatus.MATCH,
            "300": SyncStatus.MISMATCH,
            "1000": SyncStatus.DATABASE_ONLY,
            "abc": SyncStatus.DATABASE_ONLY,
        }
        assert infos[0].differences == ["Not in database"]
        assert infos[3].differences == ["Not in Asterisk config"]

    def test_registrations_do_not_mutate_input(self):
        config = [DerivedExtension(number="101", context="from-internal")]

        (info,) = classify([], config, {"101": True})

        assert info.registered is True
        assert config[0].registered is False

    def test_sort_key(self):
        assert sorted(["10", "9", "b", "a", "100"], key=sort_key) == ["9", "10", "100", "a", "b"]

    def test_summaries(self):
        assert summarize_sync([]) == "No extensions found in the database or pjsip.conf"

        matched = classify(
            [ExtensionRecord(number="1")],
            [DerivedExtension(number="1", context="from-internal")],
        )
        assert summarize_sync(matched) == "All 1 extensions in sync"

        mixed = classify([ExtensionRecord(number="1")], [DerivedExtension(number="2", context="x")])
        table = summarize_sync(mixed)
        assert "[+] 1: Not in Asterisk config" in table
        assert "[<] 2: Not in database" in table

        summary = summarize(mixed)
        assert (summary.total, summary.database_only, summary.config_only) == (2, 1, 1)
        assert not summary.in_sync


class TestAutoSyncResult:
    """Tests for AutoSyncResult."""

    def test_summary_lines(self):
        result = AutoSyncResult(
            total_processed=3,
            already_in_sync=1,
            database_to_config_synced=1,
            conflicts=[SyncConflict(number="100", differences=["Context: DB=a, Asterisk=b"])],
            errors=["sync Asterisk -> DB for 7: boom"],
        )

        text = result.summary()

        assert "Processed: 3 extensions" in text
        assert "DB -> Asterisk: 1 synced" in text
        assert "Conflicts requiring attention: 1" in text
        assert "Extension 100: Context: DB=a, Asterisk=b" in text
        assert "Errors: 1" in text
        assert not result.success
        assert result.has_conflicts
        assert result.total_synced == 1

    def test_dry_run_prefix(self):
        assert AutoSyncResult(dry_run=True).summary().startswith("DRY RUN: ")

    def test_to_dict(self):
        data = AutoSyncResult(total_processed=2, reloaded=True).to_dict()

        assert data["success"] is True
        assert data["reloaded"] is True
        assert data["conflicts"] == []


class TestReconciliationEngine:
    """Tests for ReconciliationEngine against a real config directory."""

    def test_missing_config_file_is_empty_side(self, config_store):
        """No pjsip.conf means every DB extension is database_only."""
        engine = ReconciliationEngine(
            FakeExtensionStore([ExtensionRecord(number="101")]), config_store
        )

        (info,) = engine.compare()

        assert info.status == SyncStatus.DATABASE_ONLY

    def test_scenario_auto_sync_writes_and_reloads_once(self, config_store):
        """A DB-only extension gets three sections and one reload."""
        db = FakeExtensionStore([ExtensionRecord(number="200", secret="pw")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        result = engine.auto_sync()

        assert result.database_to_config_synced == 1
        assert result.reloaded is True
        assert telephony.reloads == 1
        doc = config_store.load_document()
        assert [(s.name, s.type) for s in doc.sections] == [
            ("200", "endpoint"),
            ("200", "auth"),
            ("200", "aor"),
        ]

    def test_auto_sync_single_reload_for_many(self, config_store):
        db = FakeExtensionStore([ExtensionRecord(number=str(n)) for n in range(200, 205)])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        result = engine.auto_sync()

        assert result.database_to_config_synced == 5
        assert telephony.reloads == 1

    def test_auto_sync_idempotent(self, config_store):
        """A second pass finds everything in sync and writes nothing."""
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore([ExtensionRecord(number="200", secret="pw")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        engine.auto_sync()
        upserts = db.upserts
        reloads = telephony.reloads
        before = config_store.read_text("pjsip.conf")

        second = engine.auto_sync()

        assert second.already_in_sync == second.total_processed == 2
        assert second.total_synced == 0
        assert db.upserts == upserts
        assert telephony.reloads == reloads
        assert config_store.read_text("pjsip.conf") == before

    def test_non_numeric_database_number_is_not_an_extension(self, config_store):
        """A record like "sales" is never written and never re-synced."""
        trunk = "[sales]\ntype=endpoint\ncontext=from-trunk\n\n[sales]\ntype=aor\ncontact=sip:10.0.0.1\n"
        _write_pjsip(config_store, trunk)
        db = FakeExtensionStore([ExtensionRecord(number="sales"), ExtensionRecord(number="101")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        assert [info.number for info in engine.compare()] == ["101"]

        engine.auto_sync()
        after_first = config_store.read_text("pjsip.conf")
        second = engine.auto_sync()

        assert second.already_in_sync == second.total_processed == 1
        assert second.total_synced == 0
        assert second.reloaded is False
        assert telephony.reloads == 1
        assert config_store.read_text("pjsip.conf") == after_first
        doc = config_store.load_document()
        assert [s.type for s in doc.find_sections_by_name("sales")] == ["endpoint", "aor"]

    def test_sync_non_numeric_database_number_raises(self, config_store):
        tracker = RecordingTracker()
        db = FakeExtensionStore([ExtensionRecord(number="sales")])
        engine = ReconciliationEngine(db, config_store, tracker=tracker)

        with pytest.raises(SyncError, match="invalid extension number 'sales'"):
            engine.sync_database_to_config("sales")

        assert config_store.read_text("pjsip.conf") is None
        assert tracker.calls[-1]["success"] is False

    def test_config_only_creates_database_record(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore()
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        result = engine.auto_sync()

        assert result.config_to_database_synced == 1
        record = db.get_extension("101")
        assert record.name == "Extension 101"
        assert record.secret == "secret"
        assert record.context == "from-internal"
        assert telephony.reloads == 0
        assert result.reloaded is False

    def test_mismatch_becomes_conflict_untouched(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore([ExtensionRecord(number="101", context="sales")])
        engine = ReconciliationEngine(db, config_store, telephony=FakeTelephony())
        before = config_store.read_text("pjsip.conf")

        result = engine.auto_sync()

        assert len(result.conflicts) == 1
        assert result.conflicts[0].number == "101"
        assert result.conflicts[0].differences == ["Context: DB=sales, Asterisk=from-internal"]
        assert db.get_extension("101").context == "sales"
        assert config_store.read_text("pjsip.conf") == before

    def test_dry_run_writes_nothing(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore([ExtensionRecord(number="200")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        result = engine.auto_sync(dry_run=True)

        assert result.dry_run
        assert result.database_to_config_synced == 1
        assert result.config_to_database_synced == 1
        assert db.get_extension("101") is None
        assert config_store.read_text("pjsip.conf") == SCENARIO_A
        assert telephony.reloads == 0

    def test_errors_collected_pass_continues(self, config_store):
        """A failing extension is reported; the others still sync."""
        _write_pjsip(
            config_store,
            SCENARIO_A + "\n[7]\ntype=endpoint\ncontext=from-internal\n",
        )
        db = FakeExtensionStore()
        db.fail_upsert = {"7"}
        engine = ReconciliationEngine(db, config_store)

        result = engine.auto_sync()

        assert result.config_to_database_synced == 1
        assert db.get_extension("101") is not None
        assert len(result.errors) == 1
        assert result.errors[0].startswith("sync Asterisk -> DB for 7: ")
        assert not result.success

    def test_reload_failure_collected(self, config_store):
        db = FakeExtensionStore([ExtensionRecord(number="200")])
        engine = ReconciliationEngine(db, config_store, telephony=FakeTelephony(fail_reload=True))

        result = engine.auto_sync()

        assert result.database_to_config_synced == 1
        assert result.reloaded is False
        assert result.errors[0].startswith("reload: ")

    def test_sync_extension_db_to_config_replaces_alternate_names(self, config_store):
        """Resolving toward the config rewrites every spelling."""
        _write_pjsip(
            config_store,
            "[101]\ntype=endpoint\ncontext=from-internal\n\n[101-auth]\ntype=auth\npassword=old\n",
        )
        db = FakeExtensionStore([ExtensionRecord(number="101", secret="new", context="sales")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        engine.sync_extension("101", SyncDirection.DATABASE_TO_CONFIG)

        doc = config_store.load_document()
        assert not doc.has_section("101-auth")
        assert doc.find_section("101", "auth").get_property("password") == "new"
        assert doc.find_section("101", "endpoint").get_property("context") == "sales"
        assert telephony.reloads == 1
        assert engine.compare()[0].status == SyncStatus.MATCH

    def test_sync_extension_config_to_db_updates_existing(self, config_store):
        """Updating an existing row keeps its name and secret."""
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore([
            ExtensionRecord(number="101", name="Alice", secret="keep", context="sales")
        ])
        engine = ReconciliationEngine(db, config_store)

        engine.sync_extension("101", SyncDirection.CONFIG_TO_DATABASE)

        record = db.get_extension("101")
        assert record.name == "Alice"
        assert record.secret == "keep"
        assert record.context == "from-internal"

    def test_sync_missing_extension_raises(self, config_store):
        engine = ReconciliationEngine(FakeExtensionStore(), config_store)

        with pytest.raises(ExtensionNotFoundError, match="extension 999 not found in database"):
            engine.sync_database_to_config("999")
        with pytest.raises(ExtensionNotFoundError):
            engine.sync_config_to_database("999")

    def test_single_sync_write_failure_raises(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore()
        db.fail_upsert = {"101"}
        engine = ReconciliationEngine(db, config_store)

        with pytest.raises(SyncError, match="database write error"):
            engine.sync_config_to_database("101")

    def test_reload_error_raised_for_single_sync(self, config_store):
        db = FakeExtensionStore([ExtensionRecord(number="101")])
        engine = ReconciliationEngine(db, config_store, telephony=FakeTelephony(fail_reload=True))

        with pytest.raises(ReloadError):
            engine.sync_database_to_config("101")

    def test_remove_from_config_and_database(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore([ExtensionRecord(number="101")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        assert engine.remove_from_config("101") == 3
        assert telephony.reloads == 1
        assert engine.remove_from_config("101") == 0
        assert telephony.reloads == 1

        assert engine.remove_from_database("101") is True
        assert engine.remove_from_database("101") is False

    def test_batch_sync_all_database_to_config(self, config_store):
        db = FakeExtensionStore([ExtensionRecord(number="1"), ExtensionRecord(number="2")])
        telephony = FakeTelephony()
        engine = ReconciliationEngine(db, config_store, telephony=telephony)

        synced, errors = engine.sync_all_database_to_config()

        assert (synced, errors) == (2, [])
        assert telephony.reloads == 1

    def test_batch_sync_all_config_to_database(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        db = FakeExtensionStore()
        engine = ReconciliationEngine(db, config_store)

        assert engine.sync_all_config_to_database() == (1, [])
        assert db.get_extension("101") is not None

    def test_live_registrations(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        engine = ReconciliationEngine(
            FakeExtensionStore(), config_store, telephony=FakeTelephony({"101": True})
        )

        assert engine.compare(include_live=True)[0].registered is True
        assert engine.compare(include_live=False)[0].registered is False

    def test_live_registrations_best_effort(self, config_store):
        class Broken(FakeTelephony):
            def registrations(self):
                raise RuntimeError("socket gone")

        engine = ReconciliationEngine(FakeExtensionStore(), config_store, telephony=Broken())

        assert engine.live_registrations() == {}

    def test_reload_without_telephony(self, config_store):
        engine = ReconciliationEngine(FakeExtensionStore(), config_store)
        assert engine.reload() is False

    def test_audit_records_writes(self, config_store):
        tracker = RecordingTracker()
        db = FakeExtensionStore([ExtensionRecord(number="200")])
        engine = ReconciliationEngine(db, config_store, tracker=tracker)

        engine.auto_sync()

        assert [c["operation"] for c in tracker.calls] == ["sync_db_to_config"]
        assert tracker.calls[0]["extension"] == "200"
        assert tracker.calls[0]["success"] is True

    def test_injected_logger_used(self, config_store, caplog):
        import logging

        log = logging.getLogger("test.pbx")
        engine = ReconciliationEngine(
            FakeExtensionStore([ExtensionRecord(number="200")]), config_store, logger=log
        )

        with caplog.at_level(logging.INFO, logger="test.pbx"):
            engine.auto_sync()

        assert any(r.name == "test.pbx" for r in caplog.records)

    def test_summary_and_describe(self, config_store):
        _write_pjsip(config_store, SCENARIO_A)
        engine = ReconciliationEngine(
            FakeExtensionStore([ExtensionRecord(number="101")]), config_store
        )

        assert engine.get_summary().in_sync
        assert engine.describe() == "All 1 extensions in sync"
