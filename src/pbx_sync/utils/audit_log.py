"""Audit trail for extension sync writes.

Every write a sync operation makes (pjsip.conf section rewrite, database
insert/update, removal) is recorded as one JSON line so operators can see
what changed, in which direction, and whether it succeeded.
"""
import json
import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("pbx_sync.audit")

DEFAULT_AUDIT_DIR = "~/.pbx-sync"

AUDIT_MAX_BYTES = 10 * 1024 * 1024
AUDIT_BACKUPS = 10
OUTPUT_LIMIT = 1000


def default_audit_file() -> str:
    return os.path.join(os.path.expanduser(DEFAULT_AUDIT_DIR), "audit.log")


def setup_audit_logging(log_dir: Optional[str] = None) -> str:
    """Send audit records to ``<log_dir>/audit.log`` (default ~/.pbx-sync).

    Calling it again re-targets the audit logger; earlier handlers are closed.

    Returns:
        Path of the audit log file
    """
    directory = Path(os.path.expanduser(log_dir or DEFAULT_AUDIT_DIR))
    directory.mkdir(parents=True, exist_ok=True)
    audit_file = str(directory / "audit.log")

    while audit_logger.handlers:
        old = audit_logger.handlers[0]
        audit_logger.removeHandler(old)
        old.close()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=AUDIT_MAX_BYTES,
        backupCount=AUDIT_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False

    logger.debug(f"Audit trail at {audit_file}")
    return audit_file


@dataclass
class ChangeRecord:
    """Record of one sync write."""
    timestamp: str
    extension: str
    operation: str  # sync_db_to_config, sync_config_to_db, remove_from_config, ...
    user: str
    dry_run: bool
    success: bool
    parameters: dict
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    output: str = ""
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, line: str) -> "ChangeRecord":
        return cls(**json.loads(line))

    def matches(self, extension: Optional[str] = None, operation: Optional[str] = None) -> bool:
        """True if the record passes both (optional) filters."""
        if extension and self.extension != extension:
            return False
        return not operation or self.operation == operation


class ChangeTracker:
    """Write ChangeRecords to the audit log."""

    def __init__(self, user: str = "system"):
        self.user = user

    def log_change(
        self,
        operation: str,
        extension: str,
        parameters: dict,
        success: bool,
        output: str = "",
        error: Optional[str] = None,
        dry_run: bool = False,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
    ) -> ChangeRecord:
        """Append one record; ``output`` is cut to OUTPUT_LIMIT characters."""
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            extension=extension,
            operation=operation,
            user=self.user,
            dry_run=dry_run,
            success=success,
            parameters=parameters,
            before_state=before_state,
            after_state=after_state,
            output=(output or "")[:OUTPUT_LIMIT],
            error=error,
        )

        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    extension: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Recent sync writes, newest first.

    Only the current log file is read; rotated files are not.

    Args:
        log_file: Audit log path (default: ~/.pbx-sync/audit.log)
        extension: Only records for this extension number
        operation: Only records of this operation
        limit: Maximum number of records
    """
    path = Path(log_file or default_audit_file())
    if not path.is_file():
        return []

    matched: list[ChangeRecord] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            record = ChangeRecord.from_json(line)
        except (json.JSONDecodeError, TypeError):
            logger.debug(f"Skipping unreadable audit line in {path}")
            continue
        if record.matches(extension, operation):
            matched.append(record)

    matched.reverse()
    return matched[:limit]
