"""Compare database extensions with pjsip.conf-derived extensions.

Everything here is pure: the caller supplies both sides (and optionally the
live registration map) and gets back a classified, sorted list.
"""
from dataclasses import replace
from typing import Iterable, Optional

from ..models import ExtensionRecord
from .schema import (
    DerivedExtension,
    ExtensionSyncInfo,
    SyncStatus,
    SyncSummary,
)

NOT_IN_CONFIG = "Not in Asterisk config"
NOT_IN_DATABASE = "Not in database"


def find_differences(db: ExtensionRecord, config: DerivedExtension) -> list[str]:
    """List human-readable field differences between the two sides.

    Database defaults are applied before comparing. Transport and direct
    media are only compared when the config sets them, since older configs
    often omit both.
    """
    diffs = []

    if config.context != db.effective_context:
        diffs.append(f"Context: DB={db.effective_context}, Asterisk={config.context}")

    if config.transport and config.transport != db.effective_transport:
        diffs.append(f"Transport: DB={db.effective_transport}, Asterisk={config.transport}")

    if config.max_contacts != db.effective_max_contacts:
        diffs.append(
            f"Max Contacts: DB={db.effective_max_contacts}, Asterisk={config.max_contacts}"
        )

    if config.direct_media and config.direct_media != db.effective_direct_media:
        diffs.append(
            f"Direct Media: DB={db.effective_direct_media}, Asterisk={config.direct_media}"
        )

    return diffs


def sort_key(number: str) -> tuple:
    """Numeric extensions first in numeric order, then the rest by text."""
    if number.isdigit():
        return (0, int(number), number)
    return (1, 0, number)


def classify(
    db_records: Iterable[ExtensionRecord],
    config_records: Iterable[DerivedExtension],
    registrations: Optional[dict[str, bool]] = None,
) -> list[ExtensionSyncInfo]:
    """Classify every extension number seen on either side.

    Args:
        db_records: Extensions from the database
        config_records: Extensions derived from pjsip.conf
        registrations: Optional map of extension number -> registered

    Returns:
        One ExtensionSyncInfo per distinct number, sorted for display
    """
    registrations = registrations or {}
    db_map = {r.number: r for r in db_records}
    config_map = {
        r.number: replace(r, registered=registrations.get(r.number, False))
        for r in config_records
    }

    infos = []
    for number in set(db_map) | set(config_map):
        db = db_map.get(number)
        config = config_map.get(number)

        if db is not None and config is not None:
            differences = find_differences(db, config)
            status = SyncStatus.MISMATCH if differences else SyncStatus.MATCH
        elif db is not None:
            differences = [NOT_IN_CONFIG]
            status = SyncStatus.DATABASE_ONLY
        else:
            differences = [NOT_IN_DATABASE]
            status = SyncStatus.CONFIG_ONLY

        infos.append(ExtensionSyncInfo(
            number=number,
            status=status,
            db_record=db,
            config_record=config,
            differences=differences,
        ))

    infos.sort(key=lambda info: sort_key(info.number))
    return infos


def summarize(infos: Iterable[ExtensionSyncInfo]) -> SyncSummary:
    """Count extensions per status."""
    summary = SyncSummary()
    for info in infos:
        summary.total += 1
        if info.status == SyncStatus.MATCH:
            summary.matched += 1
        elif info.status == SyncStatus.DATABASE_ONLY:
            summary.database_only += 1
        elif info.status == SyncStatus.CONFIG_ONLY:
            summary.config_only += 1
        elif info.status == SyncStatus.MISMATCH:
            summary.mismatched += 1
    return summary


def summarize_sync(infos: list[ExtensionSyncInfo]) -> str:
    """
    Create a human-readable table of a reconciliation pass.

    Useful for CLI output and logging.
    """
    if not infos:
        return "No extensions found in the database or pjsip.conf"

    counts = summarize(infos)
    if counts.in_sync:
        return f"All {counts.total} extensions in sync"

    markers = {
        SyncStatus.MATCH: "[=]",
        SyncStatus.DATABASE_ONLY: "[+]",
        SyncStatus.CONFIG_ONLY: "[<]",
        SyncStatus.MISMATCH: "[~]",
    }

    lines = [
        f"Extensions: {counts.total} total, {counts.matched} in sync, "
        f"{counts.database_only} database only, {counts.config_only} config only, "
        f"{counts.mismatched} mismatched",
        "",
    ]
    for info in infos:
        line = f"  {markers[info.status]} {info.number}"
        if info.status != SyncStatus.MATCH:
            line += f": {'; '.join(info.differences)}"
        lines.append(line)

    return "\n".join(lines)
