"""Reconciliation engine - keeps the extension database and pjsip.conf in step.

Each pass re-derives the state of both sides from scratch:
1. Load extension records from the database
2. Parse pjsip.conf and fold its sections into derived extensions
3. Optionally ask the telephony server which endpoints are registered
4. Classify every extension number (match / database only / config only /
   mismatch)
5. In auto-sync mode, copy one-sided extensions across and report
   mismatches as conflicts for an operator to resolve
"""
import logging
from dataclasses import replace
from typing import Any, Optional

from ..asterisk_config import endpoint_sections, is_extension_number
from ..models import ExtensionRecord
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed
from .derive import derive_extensions
from .diff import classify, summarize, summarize_sync
from .schema import (
    AutoSyncResult,
    DerivedExtension,
    ExtensionNotFoundError,
    ExtensionSyncInfo,
    ReloadError,
    SyncConflict,
    SyncDirection,
    SyncError,
    SyncStatus,
    SyncSummary,
)


class ReconciliationEngine:
    """
    Compare and synchronize extensions between the database and pjsip.conf.

    Usage:
        engine = ReconciliationEngine(db_store, config_store, telephony=cli)
        for info in engine.compare():
            print(info.number, info.status.value)
        result = engine.auto_sync()
        print(result.summary())
    """

    def __init__(
        self,
        extension_store: Any,
        config_store: Any,
        telephony: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
        tracker: Optional[ChangeTracker] = None,
    ):
        """
        Initialize the engine.

        Args:
            extension_store: Database accessor (see ``pbx_sync.db.ExtensionStore``)
            config_store: pjsip.conf reader/writer (see ``AsteriskConfigStore``)
            telephony: Optional telephony CLI used for reloads and live status
            logger: Logger to report through (default: module logger)
            tracker: Optional audit trail for every write
        """
        self.extension_store = extension_store
        self.config_store = config_store
        self.telephony = telephony
        self.log = logger or logging.getLogger(__name__)
        self.tracker = tracker

    # === Reading both sides ===

    def load_database(self) -> list[ExtensionRecord]:
        """Database extensions with a canonical (all digits) number.

        Other records cannot be represented by extension sections and are
        left out of reconciliation.
        """
        records = []
        for record in self.extension_store.list_extensions():
            if is_extension_number(record.number):
                records.append(record)
            else:
                self.log.warning(f"Ignoring database extension with invalid number '{record.number}'")
        return records

    def load_config(self) -> list[DerivedExtension]:
        """Derive extensions from the current pjsip.conf (missing file = none)."""
        return derive_extensions(self.config_store.load_document())

    def live_registrations(self) -> dict[str, bool]:
        """Registration status per extension; empty if the server can't be asked."""
        if self.telephony is None:
            return {}
        try:
            return self.telephony.registrations()
        except Exception as e:
            self.log.warning(f"Live registration status unavailable: {e}")
            return {}

    @timed("compare")
    def compare(self, include_live: bool = True) -> list[ExtensionSyncInfo]:
        """
        Run one reconciliation pass.

        Args:
            include_live: Query the telephony server for registration status

        Returns:
            ExtensionSyncInfo per extension number, numerically sorted
        """
        db_records = self.load_database()
        config_records = self.load_config()
        registrations = self.live_registrations() if include_live else {}

        infos = classify(db_records, config_records, registrations)
        self.log.debug(
            f"Compared {len(db_records)} database and {len(config_records)} "
            f"config extensions: {len(infos)} distinct"
        )
        return infos

    def get_summary(self) -> SyncSummary:
        return summarize(self.compare(include_live=False))

    def describe(self) -> str:
        """Human-readable status table for logs and the CLI."""
        return summarize_sync(self.compare(include_live=False))

    # === Single-extension sync ===

    def sync_extension(self, number: str, direction: SyncDirection) -> None:
        """Resolve one extension (typically a conflict) in the given direction."""
        if direction == SyncDirection.DATABASE_TO_CONFIG:
            self.sync_database_to_config(number)
        else:
            self.sync_config_to_database(number)

    def sync_database_to_config(self, number: str, reload: bool = True) -> None:
        """
        Regenerate an extension's pjsip sections from its database record.

        Args:
            number: Extension number
            reload: Reload the telephony server afterwards

        Raises:
            ExtensionNotFoundError: Extension is not in the database
            SyncError: Writing pjsip.conf failed
            ReloadError: The reload failed
        """
        record = self.extension_store.get_extension(number)
        if record is None:
            raise ExtensionNotFoundError(number, "database")

        self._write_to_config(record)
        if reload:
            self.reload()

    def sync_config_to_database(self, number: str) -> None:
        """
        Create or update the database record from pjsip.conf.

        Raises:
            ExtensionNotFoundError: Extension is not in pjsip.conf
            SyncError: The database write failed
        """
        derived = next((d for d in self.load_config() if d.number == number), None)
        if derived is None:
            raise ExtensionNotFoundError(number, "Asterisk config")

        self._write_to_database(derived)

    def _write_to_config(self, record: ExtensionRecord, dry_run: bool = False) -> None:
        if not is_extension_number(record.number):
            error = f"invalid extension number '{record.number}'"
            self._audit("sync_db_to_config", record.number, False, error=error, dry_run=dry_run)
            raise SyncError(error)

        sections = endpoint_sections(record)
        if dry_run:
            self._audit("sync_db_to_config", record.number, True, dry_run=True)
            return

        try:
            self.config_store.write_extension_sections(record.number, sections)
        except Exception as e:
            self._audit("sync_db_to_config", record.number, False, error=str(e))
            raise SyncError(f"failed to write PJSIP config: {e}") from e

        self.log.info(f"Wrote pjsip sections for extension {record.number}")
        self._audit(
            "sync_db_to_config", record.number, True,
            after_state=record.to_dict(),
        )

    def _write_to_database(self, derived: DerivedExtension, dry_run: bool = False) -> None:
        number = derived.number
        try:
            existing = self.extension_store.get_extension(number)
        except Exception as e:
            raise SyncError(f"database query error: {e}") from e

        if existing is not None:
            record = replace(
                existing,
                context=derived.context,
                transport=derived.transport,
                max_contacts=derived.max_contacts,
                qualify_frequency=derived.qualify_frequency,
                direct_media=derived.direct_media,
                codecs=list(derived.codecs),
            )
        else:
            record = ExtensionRecord(
                number=number,
                name=f"Extension {number}",
                secret=derived.secret,
                context=derived.context,
                transport=derived.transport,
                caller_id=derived.caller_id,
                max_contacts=derived.max_contacts,
                codecs=list(derived.codecs),
                direct_media=derived.direct_media,
                qualify_frequency=derived.qualify_frequency,
            )

        if dry_run:
            self._audit("sync_config_to_db", number, True, dry_run=True)
            return

        try:
            self.extension_store.upsert_extension(record)
        except Exception as e:
            self._audit("sync_config_to_db", number, False, error=str(e))
            raise SyncError(f"database write error: {e}") from e

        self.log.info(
            f"{'Updated' if existing else 'Created'} database record for extension {number}"
        )
        self._audit(
            "sync_config_to_db", number, True,
            before_state=existing.to_dict() if existing else None,
            after_state=record.to_dict(),
        )

    # === Batch sync ===

    @timed("sync_all_db_to_config")
    def sync_all_database_to_config(self) -> tuple[int, list[str]]:
        """Write every database extension to pjsip.conf, then reload once.

        Returns:
            Tuple of (synced count, error messages)
        """
        synced = 0
        errors = []
        for record in self.load_database():
            try:
                self._write_to_config(record)
                synced += 1
            except SyncError as e:
                self.log.exception(f"Sync to config failed for {record.number}")
                errors.append(f"sync DB -> Asterisk for {record.number}: {e}")

        if synced:
            try:
                self.reload()
            except ReloadError as e:
                errors.append(f"reload: {e}")
        return synced, errors

    @timed("sync_all_config_to_db")
    def sync_all_config_to_database(self) -> tuple[int, list[str]]:
        """Write every pjsip.conf extension to the database.

        Returns:
            Tuple of (synced count, error messages)
        """
        synced = 0
        errors = []
        for derived in self.load_config():
            try:
                self._write_to_database(derived)
                synced += 1
            except SyncError as e:
                self.log.exception(f"Sync to database failed for {derived.number}")
                errors.append(f"sync Asterisk -> DB for {derived.number}: {e}")
        return synced, errors

    # === Removal ===

    def remove_from_config(self, number: str, reload: bool = True) -> int:
        """Remove every section spelling of an extension from pjsip.conf.

        Returns:
            Number of sections removed
        """
        try:
            removed = self.config_store.remove_extension(number)
        except Exception as e:
            self._audit("remove_from_config", number, False, error=str(e))
            raise SyncError(f"failed to update PJSIP config: {e}") from e

        self._audit("remove_from_config", number, True, output=f"{removed} sections removed")
        if removed and reload:
            self.reload()
        return removed

    def remove_from_database(self, number: str) -> bool:
        try:
            deleted = self.extension_store.delete_extension(number)
        except Exception as e:
            self._audit("remove_from_database", number, False, error=str(e))
            raise SyncError(f"database delete error: {e}") from e

        self._audit("remove_from_database", number, deleted)
        return deleted

    # === Reload ===

    def reload(self) -> bool:
        """Ask the telephony server to re-read pjsip.conf.

        Returns:
            True if a reload was issued, False if no telephony server is attached

        Raises:
            ReloadError: The reload command failed
        """
        if self.telephony is None:
            self.log.debug("No telephony server attached, skipping reload")
            return False
        try:
            self.telephony.reload()
        except Exception as e:
            raise ReloadError(f"reload failed: {e}") from e
        self.log.info("Telephony server reloaded")
        return True

    # === Auto-sync ===

    @timed("auto_sync")
    def auto_sync(self, dry_run: bool = False) -> AutoSyncResult:
        """
        Converge both sides without operator input.

        Database-only extensions are written to pjsip.conf, config-only
        extensions are written to the database, mismatches are reported as
        conflicts. Per-extension failures are collected; the pass always
        visits every extension. At most one reload is issued.

        Args:
            dry_run: Report what would change without writing anything

        Returns:
            AutoSyncResult with counts, conflicts and errors
        """
        result = AutoSyncResult(dry_run=dry_run)
        infos = self.compare(include_live=False)
        result.total_processed = len(infos)

        for info in infos:
            if info.status == SyncStatus.MATCH:
                result.already_in_sync += 1

            elif info.status == SyncStatus.DATABASE_ONLY:
                try:
                    self._write_to_config(info.db_record, dry_run=dry_run)
                    result.database_to_config_synced += 1
                except SyncError as e:
                    self.log.exception(f"Auto-sync to config failed for {info.number}")
                    result.errors.append(f"sync DB -> Asterisk for {info.number}: {e}")

            elif info.status == SyncStatus.CONFIG_ONLY:
                try:
                    self._write_to_database(info.config_record, dry_run=dry_run)
                    result.config_to_database_synced += 1
                except SyncError as e:
                    self.log.exception(f"Auto-sync to database failed for {info.number}")
                    result.errors.append(f"sync Asterisk -> DB for {info.number}: {e}")

            elif info.status == SyncStatus.MISMATCH:
                result.conflicts.append(SyncConflict(
                    number=info.number,
                    differences=list(info.differences),
                    db_record=info.db_record,
                    config_record=info.config_record,
                ))

        if result.database_to_config_synced and not dry_run:
            try:
                result.reloaded = self.reload()
            except ReloadError as e:
                self.log.error(f"Reload after auto-sync failed: {e}")
                result.errors.append(f"reload: {e}")

        self.log.info(
            f"{'DRY RUN: ' if dry_run else ''}Auto-sync processed {result.total_processed}, "
            f"{result.total_synced} synced, {len(result.conflicts)} conflicts, "
            f"{len(result.errors)} errors"
        )
        return result

    def _audit(
        self,
        operation: str,
        number: str,
        success: bool,
        error: Optional[str] = None,
        output: str = "",
        dry_run: bool = False,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
    ) -> None:
        if self.tracker is None:
            return
        self.tracker.log_change(
            operation=operation,
            extension=number,
            parameters={"extension": number},
            success=success,
            output=output,
            error=error,
            dry_run=dry_run,
            before_state=before_state,
            after_state=after_state,
        )
