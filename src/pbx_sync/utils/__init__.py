"""Utility modules for logging, auditing and retries."""
from .retry import with_retry, RETRYABLE_EXCEPTIONS
from .logging_config import (
    setup_logging,
    timed,
    timed_section,
    timed_section_sync,
    perf_logger,
)
from .audit_log import (
    ChangeRecord,
    ChangeTracker,
    setup_audit_logging,
    get_recent_changes,
)

__all__ = [
    "with_retry",
    "RETRYABLE_EXCEPTIONS",
    "setup_logging",
    "timed",
    "timed_section",
    "timed_section_sync",
    "perf_logger",
    "ChangeRecord",
    "ChangeTracker",
    "setup_audit_logging",
    "get_recent_changes",
]
