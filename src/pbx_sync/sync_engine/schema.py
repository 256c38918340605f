"""Schema definitions for the reconciliation engine."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..models import ExtensionRecord


class SyncStatus(str, Enum):
    """Relationship between the database and pjsip.conf for one extension."""
    MATCH = "match"
    DATABASE_ONLY = "database_only"
    CONFIG_ONLY = "config_only"
    MISMATCH = "mismatch"


class SyncDirection(str, Enum):
    """Direction of a single-extension sync."""
    DATABASE_TO_CONFIG = "db_to_config"
    CONFIG_TO_DATABASE = "config_to_db"


class SyncError(Exception):
    """A sync operation failed."""
    pass


class ExtensionNotFoundError(SyncError):
    """The extension does not exist on the side being synced from."""

    def __init__(self, number: str, where: str):
        self.number = number
        self.where = where
        super().__init__(f"extension {number} not found in {where}")


class ReloadError(SyncError):
    """The telephony server refused or failed a reload."""
    pass


@dataclass
class DerivedExtension:
    """An extension as reconstructed from its pjsip.conf sections."""
    number: str
    context: str = ""
    transport: str = ""
    codecs: list[str] = field(default_factory=list)
    secret: str = ""
    max_contacts: int = 1
    qualify_frequency: int = 60
    direct_media: str = ""
    caller_id: str = ""
    registered: bool = False

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "context": self.context,
            "transport": self.transport,
            "codecs": list(self.codecs),
            "max_contacts": self.max_contacts,
            "qualify_frequency": self.qualify_frequency,
            "direct_media": self.direct_media,
            "caller_id": self.caller_id,
            "registered": self.registered,
        }


@dataclass
class ExtensionSyncInfo:
    """Classified comparison result for one extension number."""
    number: str
    status: SyncStatus
    db_record: Optional[ExtensionRecord] = None
    config_record: Optional[DerivedExtension] = None
    differences: list[str] = field(default_factory=list)

    @property
    def in_database(self) -> bool:
        return self.db_record is not None

    @property
    def in_config(self) -> bool:
        return self.config_record is not None

    @property
    def registered(self) -> bool:
        return bool(self.config_record and self.config_record.registered)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "status": self.status.value,
            "in_database": self.in_database,
            "in_config": self.in_config,
            "registered": self.registered,
            "differences": list(self.differences),
            "database": self.db_record.to_dict() if self.db_record else None,
            "config": self.config_record.to_dict() if self.config_record else None,
        }


@dataclass
class SyncConflict:
    """A mismatch auto-sync will not resolve on its own."""
    number: str
    differences: list[str] = field(default_factory=list)
    db_record: Optional[ExtensionRecord] = None
    config_record: Optional[DerivedExtension] = None
    type: str = "mismatch"

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "type": self.type,
            "differences": list(self.differences),
        }


@dataclass
class SyncSummary:
    """Counts per status for one reconciliation pass."""
    total: int = 0
    matched: int = 0
    database_only: int = 0
    config_only: int = 0
    mismatched: int = 0

    @property
    def in_sync(self) -> bool:
        return self.total == self.matched

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "matched": self.matched,
            "database_only": self.database_only,
            "config_only": self.config_only,
            "mismatched": self.mismatched,
            "in_sync": self.in_sync,
        }


@dataclass
class AutoSyncResult:
    """Outcome of an auto-sync pass."""
    total_processed: int = 0
    already_in_sync: int = 0
    database_to_config_synced: int = 0
    config_to_database_synced: int = 0
    conflicts: list[SyncConflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    reloaded: bool = False
    dry_run: bool = False

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def total_synced(self) -> int:
        return self.database_to_config_synced + self.config_to_database_synced

    def summary(self) -> str:
        """Human-readable summary, conflicts and errors listed separately."""
        prefix = "DRY RUN: " if self.dry_run else ""
        lines = [
            f"{prefix}Processed: {self.total_processed} extensions",
            f"Already synced: {self.already_in_sync}",
            f"DB -> Asterisk: {self.database_to_config_synced} synced",
            f"Asterisk -> DB: {self.config_to_database_synced} synced",
        ]

        if self.conflicts:
            lines.append(f"Conflicts requiring attention: {len(self.conflicts)}")
            for conflict in self.conflicts:
                lines.append(f"  - Extension {conflict.number}: {', '.join(conflict.differences)}")

        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            for error in self.errors:
                lines.append(f"  - {error}")

        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "total_processed": self.total_processed,
            "already_in_sync": self.already_in_sync,
            "database_to_config_synced": self.database_to_config_synced,
            "config_to_database_synced": self.config_to_database_synced,
            "reloaded": self.reloaded,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "errors": list(self.errors),
        }
