"""Extension reconciliation between the database and pjsip.conf.

Usage:
    from pbx_sync.sync_engine import ReconciliationEngine

    engine = ReconciliationEngine(db_store, config_store, telephony=cli)
    result = engine.auto_sync(dry_run=True)
    print(result.summary())
"""

from ..config_store import AsteriskConfigStore
from ..db import SQLiteExtensionStore
from ..telephony import AsteriskCLI
from ..utils.audit_log import ChangeTracker
from .engine import ReconciliationEngine
from .schema import (
    SyncStatus,
    SyncDirection,
    DerivedExtension,
    ExtensionSyncInfo,
    SyncConflict,
    SyncSummary,
    AutoSyncResult,
    SyncError,
    ExtensionNotFoundError,
    ReloadError,
)
from .derive import derive_extensions
from .diff import classify, find_differences, summarize, summarize_sync, sort_key

__all__ = [
    # Main engine
    "ReconciliationEngine",
    "create_engine",
    # Schema classes
    "SyncStatus",
    "SyncDirection",
    "DerivedExtension",
    "ExtensionSyncInfo",
    "SyncConflict",
    "SyncSummary",
    "AutoSyncResult",
    # Errors
    "SyncError",
    "ExtensionNotFoundError",
    "ReloadError",
    # Components (for advanced use)
    "derive_extensions",
    "classify",
    "find_differences",
    "summarize",
    "summarize_sync",
    "sort_key",
]


def create_engine(settings, user: str = "system") -> ReconciliationEngine:
    """Factory function wiring the engine to the configured collaborators."""
    return ReconciliationEngine(
        extension_store=SQLiteExtensionStore(settings.db_path),
        config_store=AsteriskConfigStore(
            settings.config_dir,
            pjsip_file=settings.pjsip_file,
            dialplan_file=settings.dialplan_file,
            git_enabled=settings.git_enabled,
            backup_keep=settings.backup_keep,
        ),
        telephony=AsteriskCLI(settings.asterisk_binary, timeout=settings.asterisk_timeout),
        tracker=ChangeTracker(user=user),
    )
