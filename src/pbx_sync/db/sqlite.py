"""SQLite-backed extension registry."""
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from ..models import ExtensionRecord, TrunkRecord, parse_codecs
from .base import ExtensionStore

logger = logging.getLogger(__name__)

_EXTENSION_COLUMNS = (
    "extension_number, name, email, secret, enabled, context, transport, codecs, "
    "max_contacts, direct_media, qualify_frequency, caller_id, voicemail_enabled, "
    "notes, created_at, updated_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode_codecs(codecs: list[str]) -> Optional[str]:
    return json.dumps(list(codecs)) if codecs else None


def _decode_codecs(value: Any) -> list[str]:
    """JSON array, or a legacy comma-separated string."""
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return parse_codecs(str(value))
    if isinstance(decoded, list):
        return [str(c).strip() for c in decoded if str(c).strip()]
    return parse_codecs(str(decoded))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _row_to_extension(row: sqlite3.Row) -> ExtensionRecord:
    return ExtensionRecord(
        number=str(row["extension_number"]),
        name=row["name"] or "",
        email=row["email"] or "",
        secret=row["secret"] or "",
        enabled=bool(row["enabled"]),
        context=row["context"] or "",
        transport=row["transport"] or "",
        codecs=_decode_codecs(row["codecs"]),
        max_contacts=int(row["max_contacts"] or 0),
        direct_media=row["direct_media"] or "",
        qualify_frequency=int(row["qualify_frequency"] or 0),
        caller_id=row["caller_id"] or "",
        voicemail_enabled=bool(row["voicemail_enabled"]),
        notes=row["notes"] or "",
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def _row_to_trunk(row: sqlite3.Row) -> TrunkRecord:
    return TrunkRecord(
        name=row["name"],
        host=row["host"],
        port=int(row["port"] or 5060),
        username=row["username"] or "",
        secret=row["secret"] or "",
        transport=row["transport"] or "",
        codecs=_decode_codecs(row["codecs"]),
        context=row["context"] or "",
        enabled=bool(row["enabled"]),
        priority=int(row["priority"] or 1),
        prefix=row["prefix"] or "",
        strip_digits=int(row["strip_digits"] or 0),
        max_channels=int(row["max_channels"] or 0),
    )


class SQLiteExtensionStore(ExtensionStore):
    """Extensions and trunks in a local SQLite database."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extensions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    extension_number TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    email TEXT,
                    secret TEXT NOT NULL DEFAULT '',
                    enabled INTEGER NOT NULL DEFAULT 1,
                    context TEXT NOT NULL DEFAULT 'from-internal',
                    transport TEXT NOT NULL DEFAULT 'transport-udp',
                    codecs TEXT,
                    max_contacts INTEGER NOT NULL DEFAULT 1,
                    direct_media TEXT NOT NULL DEFAULT 'no',
                    qualify_frequency INTEGER NOT NULL DEFAULT 60,
                    caller_id TEXT,
                    voicemail_enabled INTEGER NOT NULL DEFAULT 0,
                    notes TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    host TEXT NOT NULL,
                    port INTEGER NOT NULL DEFAULT 5060,
                    username TEXT,
                    secret TEXT,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    transport TEXT NOT NULL DEFAULT 'transport-udp',
                    codecs TEXT,
                    context TEXT NOT NULL DEFAULT 'from-trunk',
                    priority INTEGER NOT NULL DEFAULT 1,
                    prefix TEXT NOT NULL DEFAULT '9',
                    strip_digits INTEGER NOT NULL DEFAULT 1,
                    max_channels INTEGER NOT NULL DEFAULT 10,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_extensions_enabled ON extensions(enabled)")
            conn.commit()
        finally:
            conn.close()

    # === Extensions ===

    def list_extensions(self) -> list[ExtensionRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_EXTENSION_COLUMNS} FROM extensions ORDER BY extension_number ASC"
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_extension(row) for row in rows]

    def get_extension(self, number: str) -> Optional[ExtensionRecord]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_EXTENSION_COLUMNS} FROM extensions WHERE extension_number = ?",
                (number,),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_extension(row) if row is not None else None

    def upsert_extension(self, record: ExtensionRecord) -> None:
        now = _now()
        created = record.created_at.isoformat() if record.created_at else now

        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO extensions(
                    extension_number, name, email, secret, enabled, context, transport,
                    codecs, max_contacts, direct_media, qualify_frequency, caller_id,
                    voicemail_enabled, notes, created_at, updated_at
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(extension_number) DO UPDATE SET
                    name = excluded.name,
                    email = excluded.email,
                    secret = excluded.secret,
                    enabled = excluded.enabled,
                    context = excluded.context,
                    transport = excluded.transport,
                    codecs = excluded.codecs,
                    max_contacts = excluded.max_contacts,
                    direct_media = excluded.direct_media,
                    qualify_frequency = excluded.qualify_frequency,
                    caller_id = excluded.caller_id,
                    voicemail_enabled = excluded.voicemail_enabled,
                    notes = excluded.notes,
                    updated_at = excluded.updated_at
                """,
                (
                    record.number,
                    record.name or f"Extension {record.number}",
                    record.email or None,
                    record.secret,
                    int(record.enabled),
                    record.context,
                    record.transport,
                    _encode_codecs(record.codecs),
                    record.max_contacts,
                    record.direct_media,
                    record.qualify_frequency,
                    record.caller_id or None,
                    int(record.voicemail_enabled),
                    record.notes or None,
                    created,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Upserted extension {record.number}")

    def delete_extension(self, number: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM extensions WHERE extension_number = ?", (number,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()
        if deleted:
            logger.debug(f"Deleted extension {number}")
        return deleted

    # === Trunks ===

    def list_trunks(self, enabled_only: bool = False) -> list[TrunkRecord]:
        query = (
            "SELECT name, host, port, username, secret, enabled, transport, codecs, context, "
            "priority, prefix, strip_digits, max_channels FROM trunks"
        )
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY priority ASC, name ASC"

        conn = self._connect()
        try:
            rows = conn.execute(query).fetchall()
        finally:
            conn.close()
        return [_row_to_trunk(row) for row in rows]

    def upsert_trunk(self, trunk: TrunkRecord) -> None:
        now = _now()
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO trunks(
                    name, host, port, username, secret, enabled, transport, codecs,
                    context, priority, prefix, strip_digits, max_channels,
                    created_at, updated_at
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    host = excluded.host,
                    port = excluded.port,
                    username = excluded.username,
                    secret = excluded.secret,
                    enabled = excluded.enabled,
                    transport = excluded.transport,
                    codecs = excluded.codecs,
                    context = excluded.context,
                    priority = excluded.priority,
                    prefix = excluded.prefix,
                    strip_digits = excluded.strip_digits,
                    max_channels = excluded.max_channels,
                    updated_at = excluded.updated_at
                """,
                (
                    trunk.name,
                    trunk.host,
                    trunk.port,
                    trunk.username or None,
                    trunk.secret or None,
                    int(trunk.enabled),
                    trunk.transport or "transport-udp",
                    _encode_codecs(trunk.codecs),
                    trunk.context or "from-trunk",
                    trunk.priority,
                    trunk.prefix,
                    trunk.strip_digits,
                    trunk.max_channels,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()
