"""Reading and writing the Asterisk configuration files.

Handles:
- Whole-file reads (a missing file reads as None, never an error)
- Atomic writes (temp file in the same directory, then rename)
- Section-level edits of pjsip.conf for extensions, trunks and transports
- The pbx-sync managed region of extensions.conf
- Point-in-time backups and optional git commits of every write
"""
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ..asterisk_config import (
    ConfigDocument,
    PJSIP_HEADER,
    Section,
    extract_managed_region,
    is_extension_number,
    replace_managed_region,
    transport_sections,
)
from ..utils.logging_config import timed_section_sync
from .git_manager import GitError, GitManager

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path("/etc/asterisk")
PJSIP_CONF = "pjsip.conf"
EXTENSIONS_CONF = "extensions.conf"
DIALPLAN_REGION = "from-internal"
BACKUP_DIR = ".pbx-sync/backups"


def section_name_from_identifier(identifier: str) -> str:
    """Map "Extension 101" / "Trunk provider" to the bare section name."""
    for prefix in ("Extension ", "Trunk "):
        if identifier.startswith(prefix):
            return identifier[len(prefix):]
    return identifier


def _remove_identifier(doc: ConfigDocument, identifier: str) -> int:
    """Remove the sections behind an identifier from doc.

    Raises:
        ValueError: For an "Extension" identifier whose number is not canonical
    """
    name = section_name_from_identifier(identifier)
    if not identifier.startswith("Extension "):
        return doc.remove_sections_by_name(name)
    if not is_extension_number(name):
        raise ValueError(f"'{name}' is not an extension number")
    return doc.remove_sections_for_extension(name)


@dataclass
class BackupInfo:
    """A stored copy of the managed configuration files."""
    name: str
    created_at: Optional[datetime]
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "files": list(self.files),
        }


class AsteriskConfigStore:
    """
    File access for pjsip.conf and extensions.conf.

    Directory layout:
        /etc/asterisk/
        ├── pjsip.conf
        ├── extensions.conf
        └── .pbx-sync/
            └── backups/<timestamp>/   # copies made by create_backup()
    """

    def __init__(
        self,
        config_dir: Optional[Union[str, Path]] = None,
        pjsip_file: str = PJSIP_CONF,
        dialplan_file: str = EXTENSIONS_CONF,
        git_enabled: bool = False,
        backup_keep: int = 10,
    ):
        """
        Initialize the store.

        Args:
            config_dir: Asterisk configuration directory (default: /etc/asterisk)
            pjsip_file: PJSIP file name inside config_dir
            dialplan_file: Dial plan file name inside config_dir
            git_enabled: Commit every write to a git repo in config_dir
            backup_keep: Number of backups to retain (0 keeps all)
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.pjsip_file = pjsip_file
        self.dialplan_file = dialplan_file
        self.git_enabled = git_enabled
        self.backup_keep = backup_keep
        self._git_manager: Optional[GitManager] = None

    @property
    def git(self) -> Optional[GitManager]:
        """GitManager for the config directory, created on first use."""
        if self._git_manager is None and self.git_enabled:
            self._git_manager = GitManager(self.config_dir)
            try:
                self._git_manager.init()
            except GitError as e:
                logger.warning(f"Git versioning unavailable: {e}")
        return self._git_manager

    @property
    def backups_dir(self) -> Path:
        return self.config_dir / BACKUP_DIR

    @property
    def pjsip_path(self) -> Path:
        return self.config_dir / self.pjsip_file

    @property
    def dialplan_path(self) -> Path:
        return self.config_dir / self.dialplan_file

    # === Raw file I/O ===

    def read_text(self, name: str) -> Optional[str]:
        """Contents of a config file, or None if it does not exist."""
        path = self.config_dir / name
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write_text(self, name: str, text: str) -> Path:
        """Replace a config file atomically.

        The new contents are written to a temp file in the same directory
        and renamed over the target, so readers never see a partial file.
        The existing file mode is kept.
        """
        path = self.config_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_git()

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            if path.exists():
                shutil.copymode(path, tmp_name)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug(f"Wrote {len(text)} bytes to {path}")
        return path

    def _ensure_git(self) -> None:
        """Initialize the repo before the first write so it is committed as a change."""
        if self.git_enabled and self._git_manager is None:
            self.git

    def _commit(self, message: str, files: list[str]) -> Optional[str]:
        if not self.git_enabled or self.git is None:
            return None
        try:
            return self.git.commit(message, files=files)
        except GitError as e:
            # the file itself is already written
            logger.warning(f"Git commit failed for '{message}': {e}")
            return None

    # === pjsip.conf documents ===

    def load_document(self, name: Optional[str] = None) -> ConfigDocument:
        """Parse a config file. A missing file yields an empty document."""
        name = name or self.pjsip_file
        text = self.read_text(name)
        source = str(self.config_dir / name)
        if text is None:
            logger.debug(f"{source} does not exist, starting from an empty document")
            return ConfigDocument.empty(PJSIP_HEADER, source_path=source)
        return ConfigDocument.parse(text, source_path=source)

    def save_document(
        self,
        doc: ConfigDocument,
        message: str,
        name: Optional[str] = None,
    ) -> Path:
        """Render and write a document, then commit it if git is enabled."""
        name = name or self.pjsip_file
        with timed_section_sync("save_document", target=name, sections=len(doc.sections)):
            path = self.write_text(name, doc.render())
        self._commit(message, [name])
        return path

    def write_sections(self, sections: list[Section], identifier: str) -> int:
        """
        Replace the sections behind an identifier with new ones.

        Args:
            sections: Replacement sections
            identifier: "Extension <number>", "Trunk <name>" or a bare section name.
                For extensions, every historical spelling ([101-auth], [aor101], ...)
                is removed first.

        Returns:
            Number of sections removed before the new ones were added
        """
        doc = self.load_document()
        removed = _remove_identifier(doc, identifier)
        doc.add_sections(sections)
        self.save_document(doc, f"Updated PJSIP config: {identifier}")
        logger.info(f"Wrote {len(sections)} sections for {identifier} (replaced {removed})")
        return removed

    def write_extension_sections(self, number: str, sections: list[Section]) -> int:
        return self.write_sections(sections, f"Extension {number}")

    def write_trunk_sections(self, name: str, sections: list[Section]) -> int:
        return self.write_sections(sections, f"Trunk {name}")

    def remove_sections(self, identifier: str) -> int:
        """Remove the sections behind an identifier. Returns the count removed."""
        doc = self.load_document()
        removed = _remove_identifier(doc, identifier)
        if removed:
            self.save_document(doc, f"Removed PJSIP config: {identifier}")
            logger.info(f"Removed {removed} sections for {identifier}")
        return removed

    def remove_extension(self, number: str) -> int:
        return self.remove_sections(f"Extension {number}")

    def remove_trunk(self, name: str) -> int:
        return self.remove_sections(f"Trunk {name}")

    def ensure_transports(self) -> bool:
        """Make sure UDP and TCP transports exist at the top of pjsip.conf.

        Returns:
            True if the file was changed
        """
        doc = self.load_document()
        if doc.find_active_section("transport-udp", "transport") and \
                doc.find_active_section("transport-tcp", "transport"):
            return False

        doc.remove_sections_by_name("transport-udp")
        doc.remove_sections_by_name("transport-tcp")
        doc.sections = transport_sections() + doc.sections
        self.save_document(doc, "Updated PJSIP transport configuration")
        logger.info("Added UDP/TCP transport sections")
        return True

    # === extensions.conf ===

    def read_dialplan(self, region: str = DIALPLAN_REGION) -> Optional[str]:
        """Body of the managed dial plan region, or None."""
        content = self.read_text(self.dialplan_file)
        if content is None:
            return None
        return extract_managed_region(content, region)

    def write_dialplan(self, body: str, region: str = DIALPLAN_REGION) -> Path:
        """Replace the managed region of extensions.conf, leaving the rest as is."""
        content = self.read_text(self.dialplan_file) or ""
        path = self.write_text(self.dialplan_file, replace_managed_region(content, region, body))
        self._commit(f"Updated dialplan: {region}", [self.dialplan_file])
        logger.info(f"Wrote dialplan region '{region}' to {path}")
        return path

    # === Backups ===

    def _managed_files(self) -> list[str]:
        return [self.pjsip_file, self.dialplan_file]

    def create_backup(self, name: Optional[str] = None) -> str:
        """
        Copy the managed files into a new backup directory.

        Args:
            name: Backup name (default: UTC timestamp)

        Returns:
            Backup name
        """
        if name is None:
            name = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")

        target = self.backups_dir / name
        target.mkdir(parents=True, exist_ok=True)

        copied = 0
        for file_name in self._managed_files():
            src = self.config_dir / file_name
            if src.exists():
                shutil.copy2(src, target / file_name)
                copied += 1

        logger.info(f"Created backup '{name}' with {copied} files")
        self._prune_backups()
        return name

    def list_backups(self) -> list[BackupInfo]:
        """Backups, newest first."""
        if not self.backups_dir.exists():
            return []

        backups = []
        for path in self.backups_dir.iterdir():
            if not path.is_dir():
                continue
            created = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            files = sorted(p.name for p in path.iterdir() if p.is_file())
            backups.append(BackupInfo(name=path.name, created_at=created, files=files))

        backups.sort(key=lambda b: (b.created_at, b.name), reverse=True)
        return backups

    def restore_backup(self, name: str) -> list[str]:
        """
        Restore the managed files from a backup.

        Returns:
            Names of the restored files

        Raises:
            ValueError: If the backup does not exist
        """
        source = self.backups_dir / name
        if not source.is_dir():
            raise ValueError(f"Backup '{name}' not found")

        restored = []
        for file_name in self._managed_files():
            src = source / file_name
            if src.exists():
                self.write_text(file_name, src.read_text(encoding="utf-8"))
                restored.append(file_name)

        if restored:
            self._commit(f"Restored backup {name}", restored)
        logger.info(f"Restored {len(restored)} files from backup '{name}'")
        return restored

    def _prune_backups(self) -> None:
        if self.backup_keep <= 0:
            return
        for stale in self.list_backups()[self.backup_keep:]:
            shutil.rmtree(self.backups_dir / stale.name, ignore_errors=True)
            logger.debug(f"Pruned backup '{stale.name}'")

    # === Git history ===

    def get_config_history(self, file_name: Optional[str] = None, limit: int = 20) -> list[dict]:
        """Commits touching the config directory (or one file), newest first."""
        if not self.git_enabled or self.git is None:
            return []
        return [c.to_dict() for c in self.git.get_history(file_path=file_name, limit=limit)]

    def get_file_at_revision(self, file_name: str, revision: str = "HEAD") -> Optional[str]:
        if not self.git_enabled or self.git is None:
            return None
        return self.git.get_file_at_revision(file_name, revision)

    def diff_revisions(
        self,
        file_name: Optional[str] = None,
        revision1: str = "HEAD~1",
        revision2: str = "HEAD",
    ) -> str:
        if not self.git_enabled or self.git is None:
            return ""
        return self.git.diff(file_name, revision1, revision2)
