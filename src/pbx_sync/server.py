"""MCP Server for PBX extension synchronization.

Keeps the extension database and Asterisk's pjsip.conf in agreement:
- Compares both sides and reports per-extension status
- Copies one-sided extensions across (auto-sync)
- Resolves conflicts in an operator-chosen direction

Tools exposed:
- extension_sync_status: Per-extension comparison of database and pjsip.conf
- extension_sync_summary: Counts and a status table
- auto_sync: Sync one-sided extensions, report conflicts
- sync_extension: Sync one extension in a given direction
- remove_extension: Remove an extension from pjsip.conf or the database
- show_sections: Show pjsip.conf sections (optionally for one extension)
- sync_trunks: Write enabled trunks and SIP transports to pjsip.conf
- apply_dialplan: Regenerate the managed internal dial plan
- config_backup: Create a backup of the managed config files
- config_restore: Restore the managed config files from a backup
- get_audit_log: Recent sync writes
- config_history: Git history of the config directory
"""
import asyncio
import json
import logging
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .asterisk_config import generate_internal_dialplan, trunk_sections
from .config import Settings, load_settings
from .sync_engine import (
    ReconciliationEngine,
    SyncDirection,
    create_engine,
    summarize,
    summarize_sync,
)
from .utils.audit_log import setup_audit_logging, get_recent_changes
from .utils.logging_config import setup_logging, timed_section

logger = logging.getLogger(__name__)

# Global state (initialized on first tool call)
settings: Optional[Settings] = None
engine: Optional[ReconciliationEngine] = None
audit_file: Optional[str] = None


def get_settings() -> Settings:
    """Get or load the settings."""
    global settings
    if settings is None:
        settings = load_settings()
    return settings


def get_engine() -> ReconciliationEngine:
    """Get or create the reconciliation engine and its collaborators."""
    global engine, audit_file
    if engine is None:
        cfg = get_settings()
        audit_file = setup_audit_logging(cfg.audit_log_dir)
        engine = create_engine(cfg, user="mcp")
    return engine


def _text(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


# Create MCP server
server = Server("pbx-sync")


# === TOOLS ===

_NUMBER = {
    "type": "string",
    "description": "Extension number (e.g., '101')"
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="extension_sync_status",
            description="Compare every extension in the database with pjsip.conf and report match / database_only / config_only / mismatch",
            inputSchema={
                "type": "object",
                "properties": {
                    "include_live": {
                        "type": "boolean",
                        "description": "Also ask Asterisk which endpoints are registered",
                        "default": True
                    },
                    "status": {
                        "type": "string",
                        "enum": ["match", "database_only", "config_only", "mismatch"],
                        "description": "Only return extensions with this status"
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="extension_sync_summary",
            description="Counts per sync status and a human-readable status table",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="auto_sync",
            description="""Synchronize one-sided extensions automatically.

Database-only extensions are written to pjsip.conf, config-only extensions
are written to the database. Mismatches are NOT changed; they are returned as
conflicts to resolve with sync_extension. Asterisk is reloaded once if
pjsip.conf changed.""",
            inputSchema={
                "type": "object",
                "properties": {
                    "dry_run": {
                        "type": "boolean",
                        "description": "Report what would change without writing",
                        "default": False
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="sync_extension",
            description="Sync a single extension in one direction (resolves a conflict)",
            inputSchema={
                "type": "object",
                "properties": {
                    "extension": _NUMBER,
                    "direction": {
                        "type": "string",
                        "enum": ["db_to_config", "config_to_db"],
                        "description": "db_to_config regenerates pjsip sections from the database; config_to_db updates the database from pjsip.conf"
                    }
                },
                "required": ["extension", "direction"]
            }
        ),
        Tool(
            name="remove_extension",
            description="Remove an extension from one side only",
            inputSchema={
                "type": "object",
                "properties": {
                    "extension": _NUMBER,
                    "side": {
                        "type": "string",
                        "enum": ["config", "database"],
                        "description": "config removes every pjsip section spelling; database deletes the record"
                    }
                },
                "required": ["extension", "side"]
            }
        ),
        Tool(
            name="show_sections",
            description="Show pjsip.conf sections, optionally only those belonging to one extension",
            inputSchema={
                "type": "object",
                "properties": {
                    "extension": _NUMBER,
                    "include_commented": {
                        "type": "boolean",
                        "description": "Include disabled (commented-out) sections",
                        "default": True
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="sync_trunks",
            description="Write every enabled trunk from the database to pjsip.conf and make sure the UDP/TCP transports exist",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="apply_dialplan",
            description="Regenerate the pbx-sync managed from-internal context in extensions.conf from the database",
            inputSchema={
                "type": "object",
                "properties": {
                    "dry_run": {
                        "type": "boolean",
                        "description": "Return the generated dial plan without writing it",
                        "default": False
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="config_backup",
            description="Create a backup of pjsip.conf and extensions.conf",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Backup name (default: timestamp)"
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="config_restore",
            description="Restore pjsip.conf and extensions.conf from a backup (lists backups if no name is given)",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Backup name"
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="get_audit_log",
            description="Recent sync writes from the audit log",
            inputSchema={
                "type": "object",
                "properties": {
                    "extension": _NUMBER,
                    "operation": {
                        "type": "string",
                        "description": "Filter by operation (e.g., 'sync_db_to_config')"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum records to return",
                        "default": 20
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="config_history",
            description="Git history of the Asterisk configuration directory",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {
                        "type": "string",
                        "description": "Only commits touching this file (e.g., 'pjsip.conf')"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum commits to return",
                        "default": 20
                    }
                },
                "required": []
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    extension = arguments.get("extension", "N/A")

    async with timed_section(f"tool:{name}", target=extension):
        try:
            eng = get_engine()

            if name == "extension_sync_status":
                return await handle_extension_sync_status(
                    eng,
                    arguments.get("include_live", True),
                    arguments.get("status")
                )

            elif name == "extension_sync_summary":
                return await handle_extension_sync_summary(eng)

            elif name == "auto_sync":
                return await handle_auto_sync(eng, arguments.get("dry_run", False))

            elif name == "sync_extension":
                return await handle_sync_extension(
                    eng,
                    arguments["extension"],
                    arguments["direction"]
                )

            elif name == "remove_extension":
                return await handle_remove_extension(
                    eng,
                    arguments["extension"],
                    arguments["side"]
                )

            elif name == "show_sections":
                return await handle_show_sections(
                    eng,
                    arguments.get("extension"),
                    arguments.get("include_commented", True)
                )

            elif name == "sync_trunks":
                return await handle_sync_trunks(eng)

            elif name == "apply_dialplan":
                return await handle_apply_dialplan(eng, arguments.get("dry_run", False))

            elif name == "config_backup":
                return await handle_config_backup(eng, arguments.get("name"))

            elif name == "config_restore":
                return await handle_config_restore(eng, arguments.get("name"))

            elif name == "get_audit_log":
                return await handle_get_audit_log(
                    arguments.get("extension"),
                    arguments.get("operation"),
                    arguments.get("limit", 20)
                )

            elif name == "config_history":
                return await handle_config_history(
                    eng,
                    arguments.get("file"),
                    arguments.get("limit", 20)
                )

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]


# === TOOL HANDLERS ===

async def handle_extension_sync_status(
    eng: ReconciliationEngine,
    include_live: bool = True,
    status: Optional[str] = None
) -> list[TextContent]:
    """Per-extension comparison."""
    infos = await asyncio.to_thread(eng.compare, include_live)
    if status:
        infos = [i for i in infos if i.status.value == status]

    return _text({
        "total": len(infos),
        "filter": status,
        "extensions": [i.to_dict() for i in infos],
    })


async def handle_extension_sync_summary(eng: ReconciliationEngine) -> list[TextContent]:
    """Counts plus the status table."""
    infos = await asyncio.to_thread(eng.compare, False)
    summary = summarize(infos)

    return _text({
        **summary.to_dict(),
        "in_sync": summary.in_sync,
        "table": summarize_sync(infos),
    })


async def handle_auto_sync(eng: ReconciliationEngine, dry_run: bool = False) -> list[TextContent]:
    """Run auto-sync."""
    result = await asyncio.to_thread(eng.auto_sync, dry_run)

    payload = result.to_dict()
    payload["summary"] = result.summary()
    if result.has_conflicts:
        payload["hint"] = "Resolve conflicts with sync_extension (direction db_to_config or config_to_db)"
    return _text(payload)


async def handle_sync_extension(
    eng: ReconciliationEngine,
    number: str,
    direction: str
) -> list[TextContent]:
    """Sync one extension in the requested direction."""
    try:
        sync_direction = SyncDirection(direction)
    except ValueError:
        return _text({
            "success": False,
            "error": f"Invalid direction '{direction}', expected db_to_config or config_to_db",
        })

    await asyncio.to_thread(eng.sync_extension, number, sync_direction)

    return _text({
        "success": True,
        "extension": number,
        "direction": sync_direction.value,
    })


async def handle_remove_extension(
    eng: ReconciliationEngine,
    number: str,
    side: str
) -> list[TextContent]:
    """Remove an extension from pjsip.conf or the database."""
    if side == "config":
        removed = await asyncio.to_thread(eng.remove_from_config, number)
        return _text({
            "success": removed > 0,
            "extension": number,
            "side": side,
            "sections_removed": removed,
        })

    if side == "database":
        deleted = await asyncio.to_thread(eng.remove_from_database, number)
        return _text({
            "success": deleted,
            "extension": number,
            "side": side,
        })

    return _text({
        "success": False,
        "error": f"Invalid side '{side}', expected config or database",
    })


async def handle_show_sections(
    eng: ReconciliationEngine,
    number: Optional[str] = None,
    include_commented: bool = True
) -> list[TextContent]:
    """List pjsip.conf sections."""
    doc = await asyncio.to_thread(eng.config_store.load_document)
    sections = doc.find_sections_for_extension(number) if number else list(doc.sections)
    if not include_commented:
        sections = [s for s in sections if s.is_active]

    formatted = []
    for section in sections:
        properties = {
            k: ("***" if k == "password" else v)
            for k, v in section.properties.items()
        }
        formatted.append({
            "name": section.name,
            "type": section.type,
            "commented": section.commented,
            "template": section.template,
            "properties": properties,
        })

    return _text({
        "extension": number,
        "source": doc.source_path,
        "section_count": len(formatted),
        "sections": formatted,
    })


async def handle_sync_trunks(eng: ReconciliationEngine) -> list[TextContent]:
    """Write enabled trunks and transports to pjsip.conf, then reload."""
    store = eng.config_store
    trunks = await asyncio.to_thread(eng.extension_store.list_trunks, True)

    transports_added = await asyncio.to_thread(store.ensure_transports)
    written = []
    for trunk in trunks:
        await asyncio.to_thread(store.write_trunk_sections, trunk.name, trunk_sections(trunk))
        written.append(trunk.name)

    reloaded = False
    if written or transports_added:
        reloaded = await asyncio.to_thread(eng.reload)

    return _text({
        "success": True,
        "trunks": written,
        "transports_added": transports_added,
        "reloaded": reloaded,
    })


async def handle_apply_dialplan(eng: ReconciliationEngine, dry_run: bool = False) -> list[TextContent]:
    """Regenerate the managed internal context."""
    extensions = await asyncio.to_thread(eng.load_database)
    body = generate_internal_dialplan(extensions)

    if dry_run:
        return _text({"dry_run": True, "dialplan": body})

    path = await asyncio.to_thread(eng.config_store.write_dialplan, body)
    reloaded = False
    if eng.telephony is not None:
        await asyncio.to_thread(eng.telephony.reload_dialplan)
        reloaded = True

    return _text({
        "success": True,
        "path": str(path),
        "extensions": len([e for e in extensions if e.enabled]),
        "reloaded": reloaded,
    })


async def handle_config_backup(eng: ReconciliationEngine, name: Optional[str]) -> list[TextContent]:
    """Create a backup."""
    backup_name = await asyncio.to_thread(eng.config_store.create_backup, name)
    return _text({
        "action": "config_backup",
        "name": backup_name,
        "hint": f"Use config_restore with name='{backup_name}' to restore",
    })


async def handle_config_restore(eng: ReconciliationEngine, name: Optional[str]) -> list[TextContent]:
    """Restore a backup, or list backups when no name is given."""
    store = eng.config_store
    if not name:
        backups = await asyncio.to_thread(store.list_backups)
        return _text({
            "action": "list_backups",
            "backups": [b.to_dict() for b in backups],
        })

    restored = await asyncio.to_thread(store.restore_backup, name)
    reloaded = False
    if restored:
        reloaded = await asyncio.to_thread(eng.reload)

    return _text({
        "action": "config_restore",
        "name": name,
        "restored": restored,
        "reloaded": reloaded,
    })


async def handle_get_audit_log(
    extension: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 20
) -> list[TextContent]:
    """Get recent sync writes from the audit log."""
    records = get_recent_changes(
        log_file=audit_file,
        extension=extension,
        operation=operation,
        limit=limit
    )

    formatted_records = []
    for r in records:
        formatted_records.append({
            "timestamp": r.timestamp,
            "extension": r.extension,
            "operation": r.operation,
            "user": r.user,
            "dry_run": r.dry_run,
            "success": r.success,
            "output": r.output,
            "error": r.error,
        })

    return _text({
        "total_records": len(formatted_records),
        "filters": {
            "extension": extension,
            "operation": operation,
            "limit": limit,
        },
        "records": formatted_records,
    })


async def handle_config_history(
    eng: ReconciliationEngine,
    file_name: Optional[str],
    limit: int
) -> list[TextContent]:
    """Git history of the configuration directory."""
    history = await asyncio.to_thread(eng.config_store.get_config_history, file_name, limit)

    return _text({
        "action": "config_history",
        "file": file_name or "all",
        "commit_count": len(history),
        "commits": history,
    })


# === RESOURCES ===

PJSIP_RESOURCE = "pbx://pjsip/config"


@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri=AnyUrl(PJSIP_RESOURCE),
            name="PJSIP Configuration",
            description="Current contents of pjsip.conf",
            mimeType="text/plain",
        )
    ]


@server.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource."""
    if str(uri) == PJSIP_RESOURCE:
        store = get_engine().config_store
        text = await asyncio.to_thread(store.read_text, store.pjsip_file)
        return text if text is not None else ""

    return json.dumps({"error": f"Unknown resource: {uri}"})


def main():
    """Run the MCP server."""
    setup_logging(console=False)

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
