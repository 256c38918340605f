"""pbx-sync settings loaded from YAML configuration.

Example ``pbx-sync.yaml``:

```yaml
asterisk:
  config_dir: /etc/asterisk
  pjsip_file: pjsip.conf
  dialplan_file: extensions.conf
  binary: asterisk
  timeout: 10
database:
  path: /var/lib/pbx-sync/pbx.db
git:
  enabled: true
backups:
  keep: 10
audit:
  log_dir: /var/log/pbx-sync
```
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV = "PBX_SYNC_CONFIG"
ASTERISK_DIR_ENV = "PBX_SYNC_ASTERISK_DIR"
DB_PATH_ENV = "PBX_SYNC_DB_PATH"

KNOWN_SECTIONS = ("asterisk", "database", "git", "backups", "audit")


class SettingsError(Exception):
    """Raised when the settings file cannot be read or has bad values."""
    pass


def _default_db_path() -> str:
    return str(Path.home() / ".pbx-sync" / "pbx.db")


@dataclass
class Settings:
    """Resolved runtime settings."""
    config_dir: str = "/etc/asterisk"
    pjsip_file: str = "pjsip.conf"
    dialplan_file: str = "extensions.conf"
    asterisk_binary: str = "asterisk"
    asterisk_timeout: float = 10.0
    db_path: str = field(default_factory=_default_db_path)
    git_enabled: bool = True
    backup_keep: int = 10
    audit_log_dir: Optional[str] = None
    source_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[str] = None) -> "Settings":
        """Build settings from the parsed YAML mapping."""
        if not isinstance(data, dict):
            raise SettingsError(f"{source_path or 'settings'}: top level must be a mapping")

        for key in data:
            if key not in KNOWN_SECTIONS:
                logger.warning(f"Unknown settings key '{key}' in {source_path}")

        asterisk = _section(data, "asterisk")
        database = _section(data, "database")
        git = _section(data, "git")
        backups = _section(data, "backups")
        audit = _section(data, "audit")

        settings = cls(source_path=source_path)
        settings.config_dir = str(asterisk.get("config_dir", settings.config_dir))
        settings.pjsip_file = str(asterisk.get("pjsip_file", settings.pjsip_file))
        settings.dialplan_file = str(asterisk.get("dialplan_file", settings.dialplan_file))
        settings.asterisk_binary = str(asterisk.get("binary", settings.asterisk_binary))
        settings.asterisk_timeout = _number(asterisk, "timeout", settings.asterisk_timeout, float)
        settings.db_path = str(database.get("path", settings.db_path))
        settings.git_enabled = bool(git.get("enabled", settings.git_enabled))
        settings.backup_keep = _number(backups, "keep", settings.backup_keep, int)
        if audit.get("log_dir"):
            settings.audit_log_dir = str(audit["log_dir"])
        return settings

    def apply_env(self) -> "Settings":
        """Apply environment variable overrides in place."""
        if os.environ.get(ASTERISK_DIR_ENV):
            self.config_dir = os.environ[ASTERISK_DIR_ENV]
        if os.environ.get(DB_PATH_ENV):
            self.db_path = os.environ[DB_PATH_ENV]
        return self

    def to_dict(self) -> dict:
        return {
            "asterisk": {
                "config_dir": self.config_dir,
                "pjsip_file": self.pjsip_file,
                "dialplan_file": self.dialplan_file,
                "binary": self.asterisk_binary,
                "timeout": self.asterisk_timeout,
            },
            "database": {"path": self.db_path},
            "git": {"enabled": self.git_enabled},
            "backups": {"keep": self.backup_keep},
            "audit": {"log_dir": self.audit_log_dir},
        }


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise SettingsError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _number(section: dict, key: str, default: Any, kind: type) -> Any:
    if key not in section:
        return default
    try:
        return kind(section[key])
    except (TypeError, ValueError) as e:
        raise SettingsError(f"Invalid value for '{key}': {section[key]!r}") from e


def find_settings_file() -> Optional[str]:
    """Find the settings file, or None to run on built-in defaults."""
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return env_path

    search_paths = [
        Path.cwd() / "configs" / "pbx-sync.yaml",
        Path.cwd() / "pbx-sync.yaml",
        Path.home() / ".config" / "pbx-sync" / "pbx-sync.yaml",
        Path("/etc/pbx-sync/pbx-sync.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return str(path)
    return None


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings.

    Args:
        path: Explicit settings file. When omitted, PBX_SYNC_CONFIG and the
            search path are tried; if nothing is found, defaults are used.

    Returns:
        Settings with environment overrides applied

    Raises:
        SettingsError: If the file is unreadable or malformed
    """
    path = path or find_settings_file()
    if path is None:
        logger.debug("No pbx-sync.yaml found, using defaults")
        return Settings().apply_env()

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {path}: {e}") from e

    logger.debug(f"Loaded settings from {path}")
    return Settings.from_dict(data, source_path=str(path)).apply_env()
