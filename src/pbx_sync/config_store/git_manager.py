"""Git versioning for the Asterisk configuration directory.

Provides:
- Repository initialization on first use
- A commit after every pbx-sync write
- History and per-revision file contents for review and rollback
"""
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

GIT_USER = "pbx-sync"
GIT_EMAIL = "pbx-sync@localhost"


class GitError(Exception):
    """Exception raised for git operation failures."""
    pass


@dataclass
class CommitInfo:
    """Information about a git commit."""
    hash: str
    short_hash: str
    author: str
    date: datetime
    message: str

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "short_hash": self.short_hash,
            "author": self.author,
            "date": self.date.isoformat(),
            "message": self.message,
        }


class GitManager:
    """
    Runs git against the directory holding pjsip.conf and extensions.conf.
    """

    def __init__(self, repo_path: Path):
        """
        Args:
            repo_path: Asterisk configuration directory (becomes the git root)
        """
        self.repo_path = Path(repo_path)

    def _run_git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the repo directory."""
        cmd = ["git", "-C", str(self.repo_path)] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise GitError("git executable not found") from e

        if check and result.returncode != 0:
            logger.error(f"Git command failed: {result.stderr.strip()}")
            raise GitError(f"Git command failed: {result.stderr.strip()}")

        return result

    def is_initialized(self) -> bool:
        return (self.repo_path / ".git").exists()

    def init(self) -> bool:
        """
        Initialize the repo if needed.

        Returns:
            True if newly initialized, False if it already existed
        """
        if self.is_initialized():
            return False

        self.repo_path.mkdir(parents=True, exist_ok=True)
        self._run_git("init")
        self._run_git("config", "user.name", GIT_USER)
        self._run_git("config", "user.email", GIT_EMAIL)

        gitignore = self.repo_path / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(
                "# pbx-sync\n"
                "*.tmp\n"
                ".pbx-sync/\n"
            )

        self._run_git("add", ".")
        self._run_git("commit", "-m", "Initial Asterisk configuration", "--allow-empty")

        logger.info(f"Initialized git repo at {self.repo_path}")
        return True

    def commit(self, message: str, files: Optional[list[str]] = None) -> Optional[str]:
        """
        Commit changes.

        Args:
            message: Commit message
            files: Files to stage, relative to the repo root (default: all)

        Returns:
            Commit hash, or None if there was nothing to commit
        """
        if not self.is_initialized():
            self.init()

        if files:
            self._run_git("add", "--", *files)
        else:
            self._run_git("add", ".")

        staged = self._run_git("diff", "--cached", "--quiet", check=False)
        if staged.returncode == 0:
            logger.debug("No changes to commit")
            return None

        self._run_git("commit", "-m", message)
        commit_hash = self._run_git("rev-parse", "HEAD").stdout.strip()

        logger.info(f"Committed: {commit_hash[:8]} - {message.splitlines()[0]}")
        return commit_hash

    def get_history(self, file_path: Optional[str] = None, limit: int = 20) -> list[CommitInfo]:
        """
        Get commit history, newest first.

        Args:
            file_path: Only commits touching this file (e.g. "pjsip.conf")
            limit: Maximum commits to return
        """
        if not self.is_initialized():
            return []

        args = ["log", "--format=%H|%h|%an|%aI|%s", f"-n{limit}"]
        if file_path:
            args.extend(["--", file_path])

        result = self._run_git(*args, check=False)
        if result.returncode != 0:
            return []

        commits = []
        for line in result.stdout.splitlines():
            parts = line.split("|", 4)
            if len(parts) < 5:
                continue
            try:
                commits.append(CommitInfo(
                    hash=parts[0],
                    short_hash=parts[1],
                    author=parts[2],
                    date=datetime.fromisoformat(parts[3]),
                    message=parts[4],
                ))
            except ValueError as e:
                logger.warning(f"Failed to parse commit: {e}")

        return commits

    def get_file_at_revision(self, file_path: str, revision: str = "HEAD") -> Optional[str]:
        """File contents at a revision, or None if it did not exist there."""
        if not self.is_initialized():
            return None

        result = self._run_git("show", f"{revision}:{file_path}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def diff(
        self,
        file_path: Optional[str] = None,
        revision1: str = "HEAD~1",
        revision2: str = "HEAD",
    ) -> str:
        """Unified diff between two revisions."""
        if not self.is_initialized():
            return ""

        args = ["diff", revision1, revision2]
        if file_path:
            args.extend(["--", file_path])
        return self._run_git(*args, check=False).stdout
