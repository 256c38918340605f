"""Storage for the Asterisk configuration files.

This package provides:
- AsteriskConfigStore: read/write pjsip.conf and extensions.conf
- BackupInfo: a point-in-time copy of the managed files
- GitManager: optional git versioning of the configuration directory
"""

from .store import (
    AsteriskConfigStore,
    BackupInfo,
    DEFAULT_CONFIG_DIR,
    section_name_from_identifier,
)
from .git_manager import GitManager, CommitInfo, GitError

__all__ = [
    "AsteriskConfigStore",
    "BackupInfo",
    "DEFAULT_CONFIG_DIR",
    "section_name_from_identifier",
    "GitManager",
    "CommitInfo",
    "GitError",
]
