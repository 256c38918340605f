#!/usr/bin/env python3
"""pbx-sync command line.

Usage:
    pbx-sync [--config FILE] status
    pbx-sync [--config FILE] auto-sync [--dry-run]
    pbx-sync [--config FILE] sync NUMBER --direction {db_to_config,config_to_db}
    pbx-sync [--config FILE] remove NUMBER --side {config,database}

Environment variables:
    PBX_SYNC_CONFIG          Settings file (default: search path)
    PBX_SYNC_ASTERISK_DIR    Override asterisk.config_dir
    PBX_SYNC_DB_PATH         Override database.path
"""
import argparse
import logging
import sys
from typing import Optional

from .config import SettingsError, load_settings
from .sync_engine import (
    ReconciliationEngine,
    SyncDirection,
    SyncError,
    create_engine,
    summarize_sync,
)
from .utils.audit_log import setup_audit_logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICTS = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pbx-sync",
        description="Keep the extension database and Asterisk pjsip.conf in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show what differs
    pbx-sync status

    # Preview, then apply, automatic sync
    pbx-sync auto-sync --dry-run
    pbx-sync auto-sync

    # Resolve a conflict using the database as the source of truth
    pbx-sync sync 101 --direction db_to_config
""",
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Settings file (default: PBX_SYNC_CONFIG or the search path)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Compare database and pjsip.conf")
    status.add_argument(
        "--live",
        action="store_true",
        help="Include live registration status from Asterisk",
    )

    auto = sub.add_parser("auto-sync", help="Sync one-sided extensions, report conflicts")
    auto.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing",
    )

    sync = sub.add_parser("sync", help="Sync one extension in a given direction")
    sync.add_argument("number", help="Extension number")
    sync.add_argument(
        "--direction",
        required=True,
        choices=[d.value for d in SyncDirection],
        help="Which side wins",
    )

    remove = sub.add_parser("remove", help="Remove an extension from one side")
    remove.add_argument("number", help="Extension number")
    remove.add_argument(
        "--side",
        required=True,
        choices=["config", "database"],
        help="Side to remove the extension from",
    )

    return parser


def cmd_status(engine: ReconciliationEngine, live: bool) -> int:
    infos = engine.compare(include_live=live)
    print(summarize_sync(infos))
    if live:
        registered = [i.number for i in infos if i.registered]
        print(f"\nRegistered: {', '.join(registered) if registered else 'none'}")
    return EXIT_OK


def cmd_auto_sync(engine: ReconciliationEngine, dry_run: bool) -> int:
    result = engine.auto_sync(dry_run=dry_run)
    print(result.summary())

    for conflict in result.conflicts:
        print(f"\n  {conflict.number}:")
        for difference in conflict.differences:
            print(f"    - {difference}")
    for error in result.errors:
        print(f"  ERROR: {error}")

    if result.errors:
        return EXIT_ERROR
    if result.has_conflicts:
        return EXIT_CONFLICTS
    return EXIT_OK


def cmd_sync(engine: ReconciliationEngine, number: str, direction: str) -> int:
    engine.sync_extension(number, SyncDirection(direction))
    print(f"Extension {number} synced ({direction})")
    return EXIT_OK


def cmd_remove(engine: ReconciliationEngine, number: str, side: str) -> int:
    if side == "config":
        removed = engine.remove_from_config(number)
        print(f"Removed {removed} sections for extension {number} from pjsip.conf")
        return EXIT_OK if removed else EXIT_ERROR

    deleted = engine.remove_from_database(number)
    print(f"Extension {number} {'deleted from' if deleted else 'not found in'} the database")
    return EXIT_OK if deleted else EXIT_ERROR


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the pbx-sync CLI."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = load_settings(args.config)
    except SettingsError as e:
        logger.error(str(e))
        return EXIT_ERROR

    setup_audit_logging(settings.audit_log_dir)
    engine = create_engine(settings, user="cli")

    try:
        if args.command == "status":
            return cmd_status(engine, args.live)
        if args.command == "auto-sync":
            return cmd_auto_sync(engine, args.dry_run)
        if args.command == "sync":
            return cmd_sync(engine, args.number, args.direction)
        if args.command == "remove":
            return cmd_remove(engine, args.number, args.side)
    except SyncError as e:
        logger.error(str(e))
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130

    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
