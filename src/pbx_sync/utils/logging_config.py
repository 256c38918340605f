"""Logging configuration for pbx-sync.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing decorators for sync passes and tool calls

Environment Variables:
    PBX_SYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    PBX_SYNC_LOG_FILE: Path to log file (default: ~/.pbx-sync/pbx-sync.log)
    PBX_SYNC_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    PBX_SYNC_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from pbx_sync.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("auto_sync")
    def auto_sync(self):
        ...

    # Or use context manager for sections:
    async with timed_section("tool:auto_sync", target="pjsip.conf"):
        ...
"""
import asyncio
import functools
import logging
import os
import time
from contextlib import contextmanager, asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("pbx_sync.perf")
main_logger = logging.getLogger("pbx_sync")

_configured = False


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("PBX_SYNC_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".pbx-sync" / "pbx-sync.log"
    path_str = os.environ.get("PBX_SYNC_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(console: bool = True) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects PBX_SYNC_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger writing to a separate file

    Calling it again is a no-op.

    Args:
        console: Also log to stderr. The MCP server passes False so
            its client only sees protocol traffic.
    """
    global _configured
    if _configured:
        return

    log_level = get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("PBX_SYNC_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("PBX_SYNC_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "pbx-sync-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.addHandler(file_handler)

    # perf records are written once, to their own file
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    if console:
        # stderr so stdout stays free for command output
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(main_format)
        main_logger.addHandler(console_handler)
        perf_logger.addHandler(console_handler)

    _configured = True
    main_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")
    perf_logger.info(f"Performance logging to: {perf_log_file}")


@contextmanager
def timed_section_sync(operation: str, target: Optional[str] = None, **extra):
    """Log the elapsed time of a block to the perf logger.

    Args:
        operation: Name of the operation
        target: What was operated on (extension number, file name)
        **extra: Additional key=value context appended to the line
    """
    start = time.perf_counter()
    suffix = "".join(f" | {k}={v}" for k, v in extra.items())
    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(
            f"{operation:24s} | {target or 'N/A':15s} | {elapsed:8.2f}ms | FAIL: {e}{suffix}"
        )
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(f"{operation:24s} | {target or 'N/A':15s} | {elapsed:8.2f}ms | OK{suffix}")


@asynccontextmanager
async def timed_section(operation: str, target: Optional[str] = None, **extra):
    """Async form of timed_section_sync.

    Usage:
        async with timed_section("tool:sync_extension", target="101"):
            ...
    """
    with timed_section_sync(operation, target, **extra):
        yield


def timed(operation: str, target: Optional[str] = None):
    """Decorator timing every call of a sync or async function.

    Usage:
        @timed("auto_sync")
        def auto_sync(self, dry_run=False):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            with timed_section_sync(operation, target):
                return await func(*args, **kwargs)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            with timed_section_sync(operation, target):
                return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
