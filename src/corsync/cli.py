"""
Command-line interface for Corsync.

Provides commands for managing a tenant's audit platform connection,
running evidence exports, and inspecting sync history.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Any, NoReturn

from corsync import __version__
from corsync.client.base import COR_ELEMENTS, AuditPlatformError
from corsync.config.credentials import CredentialError, generate_encryption_key
from corsync.config.settings import (
    DEFAULT_CONFIG_FILE,
    ConfigurationError,
    Settings,
    load_config,
)
from corsync.records import DateRange, FileSystemBlobStore, SqliteRecordSource
from corsync.storage import SyncStore
from corsync.storage.models import SYNC_FREQUENCIES
from corsync.sync import (
    ConnectionManager,
    CredentialValidationError,
    ExporterRegistry,
    ExportOptions,
    ExportOrchestrator,
    ExportProgress,
    SyncError,
)

# Set up logging
logger = logging.getLogger(__name__)

TENANT_ENV_VAR = "CORSYNC_TENANT_ID"
API_KEY_ENV_VAR = "CORSYNC_API_KEY"

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def output_json(data: Any) -> None:
    output(json.dumps(data, indent=2, default=str), force=True)


def iso_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid date '{value}', expected YYYY-MM-DD"
        ) from None


def cor_element(value: str) -> int:
    """argparse type for COR element numbers."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid COR element '{value}'") from None
    if number not in COR_ELEMENTS:
        raise argparse.ArgumentTypeError(
            f"Invalid COR element {number}, expected 1-{len(COR_ELEMENTS)}"
        )
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for Corsync CLI."""
    parser = argparse.ArgumentParser(
        prog="corsync",
        description="Export safety records to an external COR audit platform",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"corsync {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help=f"Override config file location (default: {DEFAULT_CONFIG_FILE})",
    )

    parser.add_argument(
        "--tenant",
        metavar="ID",
        default=os.environ.get(TENANT_ENV_VAR),
        help=f"Tenant to operate on (default: ${TENANT_ENV_VAR})",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # keygen command
    keygen_parser = subparsers.add_parser(
        "keygen",
        help="Generate a credential encryption key",
        description="Print a new random key for security.encryption_key.",
    )
    keygen_parser.set_defaults(func=cmd_keygen)

    # connect command
    connect_parser = subparsers.add_parser(
        "connect",
        help="Validate and store the tenant's API key",
        description=(
            f"Validate an audit platform API key and save it encrypted. The key is "
            f"read from ${API_KEY_ENV_VAR} or prompted for."
        ),
    )
    connect_parser.add_argument(
        "--endpoint",
        metavar="URL",
        help="Audit platform endpoint (default: from config)",
    )
    connect_parser.add_argument(
        "--actor",
        metavar="USER_ID",
        help="User making the change",
    )
    connect_parser.set_defaults(func=cmd_connect)

    # validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Re-validate the stored API key",
        description="Check the stored key and refresh organization and audit details.",
    )
    validate_parser.set_defaults(func=cmd_validate)

    # disconnect command
    disconnect_parser = subparsers.add_parser(
        "disconnect",
        help="Remove the tenant's connection",
    )
    disconnect_parser.set_defaults(func=cmd_disconnect)

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show connection details and sync statistics",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # settings command
    settings_parser = subparsers.add_parser(
        "settings",
        help="Change automatic sync settings",
    )
    enable_group = settings_parser.add_mutually_exclusive_group()
    enable_group.add_argument(
        "--enable",
        dest="sync_enabled",
        action="store_true",
        default=None,
        help="Enable automatic sync",
    )
    enable_group.add_argument(
        "--disable",
        dest="sync_enabled",
        action="store_false",
        help="Disable automatic sync",
    )
    settings_parser.add_argument(
        "--frequency",
        choices=SYNC_FREQUENCIES,
        help="Automatic sync frequency",
    )
    settings_parser.set_defaults(func=cmd_settings)

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export evidence to the audit platform",
        description="Export every selected evidence type for the tenant.",
    )
    mode_group = export_parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--incremental",
        dest="incremental",
        action="store_true",
        default=None,
        help="Skip records exported before (default from config)",
    )
    mode_group.add_argument(
        "--full",
        dest="incremental",
        action="store_false",
        help="Export every candidate record",
    )
    export_parser.add_argument(
        "--start",
        type=iso_date,
        metavar="YYYY-MM-DD",
        help="Only export dated records from this day",
    )
    export_parser.add_argument(
        "--end",
        type=iso_date,
        metavar="YYYY-MM-DD",
        help="Only export dated records up to this day",
    )
    export_parser.add_argument(
        "--element",
        type=cor_element,
        action="append",
        metavar="N",
        help="Only export records for this COR element (can be repeated)",
    )
    export_parser.add_argument(
        "--type",
        dest="item_types",
        action="append",
        choices=ExporterRegistry.get_item_types(),
        metavar="TYPE",
        help="Only export this evidence type (can be repeated)",
    )
    export_parser.add_argument(
        "--actor",
        metavar="USER_ID",
        help="User starting the export",
    )
    export_parser.add_argument(
        "--json",
        action="store_true",
        help="Output result as JSON",
    )
    export_parser.set_defaults(func=cmd_export)

    # export-item command
    export_item_parser = subparsers.add_parser(
        "export-item",
        help="Export a single record now",
    )
    export_item_parser.add_argument(
        "--type",
        dest="item_type",
        required=True,
        choices=ExporterRegistry.get_item_types(),
        metavar="TYPE",
        help="Evidence type of the record",
    )
    export_item_parser.add_argument(
        "--id",
        dest="item_id",
        required=True,
        help="Record ID",
    )
    export_item_parser.add_argument(
        "--actor",
        metavar="USER_ID",
        help="User starting the export",
    )
    export_item_parser.set_defaults(func=cmd_export_item)

    # history command
    history_parser = subparsers.add_parser(
        "history",
        help="Show recent export runs",
    )
    history_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of runs to show (default: 20)",
    )
    history_parser.add_argument(
        "--offset",
        type=int,
        default=0,
        help="Number of runs to skip",
    )
    history_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    history_parser.set_defaults(func=cmd_history)

    # structure command
    structure_parser = subparsers.add_parser(
        "structure",
        help="Show the assigned audit's elements and questions",
    )
    structure_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    structure_parser.set_defaults(func=cmd_structure)

    # audit-status command
    audit_status_parser = subparsers.add_parser(
        "audit-status",
        help="Refresh and show the assigned audit's status",
    )
    audit_status_parser.set_defaults(func=cmd_audit_status)

    # push-updates command
    push_parser = subparsers.add_parser(
        "push-updates",
        help="Update evidence for records flagged as changed",
    )
    push_parser.add_argument(
        "--actor",
        metavar="USER_ID",
        help="User starting the update",
    )
    push_parser.set_defaults(func=cmd_push_updates)

    # mark-changed command
    mark_parser = subparsers.add_parser(
        "mark-changed",
        help="Flag an exported record for an evidence update",
    )
    mark_parser.add_argument("--type", dest="item_type", required=True, metavar="TYPE")
    mark_parser.add_argument("--id", dest="item_id", required=True)
    mark_parser.set_defaults(func=cmd_mark_changed)

    # remove-item command
    remove_parser = subparsers.add_parser(
        "remove-item",
        help="Delete a record's evidence from the audit platform",
    )
    remove_parser.add_argument("--type", dest="item_type", required=True, metavar="TYPE")
    remove_parser.add_argument("--id", dest="item_id", required=True)
    remove_parser.set_defaults(func=cmd_remove_item)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# -----------------------------------------------------------------------------
# Engine wiring
# -----------------------------------------------------------------------------


def load_settings(args: argparse.Namespace) -> Settings:
    """
    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)
    # -v and -q take precedence over the configured level
    if not args.verbose and not args.quiet:
        logging.getLogger("corsync").setLevel(settings.log_level)
    return settings


def build_engine(settings: Settings) -> tuple[ConnectionManager, ExportOrchestrator]:
    """
    Wire the sync store, record source and connection manager from settings.

    Raises:
        EncryptionKeyError: If no valid encryption key is configured.
    """
    store = SyncStore(Path(settings.data_dir))
    manager = ConnectionManager.from_settings(settings, store)
    orchestrator = ExportOrchestrator(
        store,
        manager,
        SqliteRecordSource(settings.records.database),
        FileSystemBlobStore(settings.records.blob_root, timeout=settings.platform.timeout_seconds),
        lock_timeout_seconds=settings.export.lock_timeout_seconds,
    )
    return manager, orchestrator


def require_tenant(args: argparse.Namespace) -> str | None:
    if not args.tenant:
        output_error(f"Error: No tenant given. Use --tenant or set {TENANT_ENV_VAR}.")
        return None
    return args.tenant


def _print_progress(progress: ExportProgress) -> None:
    output(f"  [{progress.percentage:3d}%] {progress.phase}")


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def cmd_keygen(args: argparse.Namespace) -> int:
    """Print a new encryption key."""
    key = generate_encryption_key()
    output(key, force=True)
    output()
    output("Store this key in config.yaml under security.encryption_key")
    output("or in the CORSYNC_ENCRYPTION_KEY environment variable.")
    output("Keys saved with one encryption key cannot be read with another.")
    return 0


def cmd_connect(args: argparse.Namespace) -> int:
    """Validate and store an API key."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))

    api_key = os.environ.get(API_KEY_ENV_VAR) or getpass.getpass("Enter audit platform API key: ")
    output(f"Validating API key for tenant {tenant_id}...")

    try:
        connection = manager.save_connection(
            tenant_id, api_key, actor_id=args.actor, endpoint=args.endpoint
        )
    except CredentialValidationError as e:
        output_error(f"Error: {e.message}")
        return 1

    output("Connected.")
    output(f"  Organization: {connection.organization_name or connection.organization_id}")
    output(f"  API key:      {connection.api_key_hint}")
    if connection.audit_id:
        output(f"  Audit:        {connection.audit_id}")
        output(f"  Scheduled:    {connection.audit_scheduled_date or '-'}")
        output(f"  Auditor:      {connection.auditor_name or '-'}")
    else:
        output("  No audit assigned yet.")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Re-validate the stored API key."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))
    result = manager.validate_connection(tenant_id)

    if result.valid:
        output(f"Connection valid ({result.organization_name or result.organization_id}).")
        return 0
    output_error(f"Connection invalid: {result.error} ({result.reason})")
    return 1


def cmd_disconnect(args: argparse.Namespace) -> int:
    """Remove the tenant's connection."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))
    if manager.disconnect(tenant_id):
        output(f"Disconnected tenant {tenant_id}.")
        return 0
    output(f"Tenant {tenant_id} has no connection.")
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show connection details and sync statistics."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))
    info = manager.get_safe_connection_info(tenant_id)
    stats = manager.get_stats(tenant_id)

    if args.json:
        output_json({
            "connection": info,
            "stats": stats.to_dict() if stats else None,
        })
        return 0 if info else 1

    if info is None or stats is None:
        output(f"Tenant {tenant_id} is not connected. Run 'corsync connect' first.")
        return 1

    output("Connection Status")
    output("=" * 50)
    output(f"Status:          {info['connection_status']}")
    output(f"Organization:    {info['organization_name'] or info['organization_id'] or '-'}")
    output(f"API key:         {info['api_key_hint']}")
    output(f"Endpoint:        {info['api_endpoint']}")
    output(f"Last validated:  {info['last_validated_at'] or 'never'}")
    output()
    output(f"Audit:           {info['audit_id'] or 'not assigned'}")
    output(f"Audit status:    {info['audit_status'] or '-'}")
    output(f"Scheduled:       {info['audit_scheduled_date'] or '-'}")
    output(f"Auditor:         {info['auditor_name'] or '-'}")
    output()
    output(f"Auto sync:       {'on' if info['sync_enabled'] else 'off'} ({info['sync_frequency']})")
    output(f"Last sync:       {info['last_sync_at'] or 'never'} ({info['last_sync_status'] or '-'})")
    if info["last_sync_error"]:
        output(f"Last error:      {info['last_sync_error']}")
    output(f"Items synced:    {stats.total_items_synced}")
    output(f"Pending updates: {stats.pending_sync_items}")
    output(
        f"Runs:            {stats.total_sync_operations} "
        f"({stats.successful_syncs} completed, {stats.failed_syncs} failed)"
    )
    return 0


def cmd_settings(args: argparse.Namespace) -> int:
    """Change automatic sync settings."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))
    try:
        connection = manager.update_sync_settings(
            tenant_id, sync_enabled=args.sync_enabled, sync_frequency=args.frequency
        )
    except SyncError as e:
        output_error(f"Error: {e.message}")
        return 1

    output(
        f"Auto sync {'enabled' if connection.sync_enabled else 'disabled'} "
        f"({connection.sync_frequency})"
    )
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Run an evidence export."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    settings = load_settings(args)
    _, orchestrator = build_engine(settings)

    date_range = None
    if args.start or args.end:
        try:
            date_range = DateRange(args.start, args.end)
        except ValueError as e:
            output_error(f"Error: {e}")
            return 1

    incremental = settings.export.default_incremental if args.incremental is None else args.incremental
    options = ExportOptions(
        actor_id=args.actor,
        incremental=incremental,
        date_range=date_range,
        elements=args.element,
        include_types=args.item_types,
        on_progress=None if args.json else _print_progress,
    )

    if not args.json:
        output(f"Evidence Export ({'incremental' if incremental else 'full'})")
        output("=" * 50)

    try:
        result = orchestrator.export_all_evidence(tenant_id, options)
    except SyncError as e:
        output_error(f"Error: {e.message}")
        return 1

    if args.json:
        output_json(result.to_dict())
        return 0 if result.success else 1

    output()
    output(f"{'Type':<22} {'Exported':>9} {'Failed':>7} {'Skipped':>8}")
    output("-" * 50)
    for key, type_result in result.by_type.items():
        output(
            f"{key:<22} {type_result.succeeded:>9} {type_result.failed:>7} "
            f"{type_result.skipped:>8}"
        )
    output("-" * 50)
    output(
        f"Export {result.status}: {result.total_exported} exported, "
        f"{result.total_failed} failed, {result.total_skipped} skipped "
        f"in {result.duration_seconds:.1f}s"
    )

    if result.errors:
        output()
        output("Errors:")
        for error in result.errors:
            output(f"  {error.item_type} {error.item_name or error.item_id}: {error.error}")

    return 0 if result.success else 1


def cmd_export_item(args: argparse.Namespace) -> int:
    """Export one record."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    _, orchestrator = build_engine(load_settings(args))
    result = orchestrator.export_single_item(
        tenant_id, args.item_type, args.item_id, actor_id=args.actor
    )
    if result.success:
        output(f"Exported {args.item_type} {args.item_id} as {result.external_item_id}")
        return 0
    output_error(f"Error: {result.error}")
    return 1


def cmd_history(args: argparse.Namespace) -> int:
    """Show recent export runs."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    _, orchestrator = build_engine(load_settings(args))
    runs = orchestrator.get_sync_history(tenant_id, limit=args.limit, offset=args.offset)

    if args.json:
        output_json([run.to_dict() for run in runs])
        return 0

    if not runs:
        output("No export runs recorded.")
        return 0

    output(f"{'Started':<20} {'Type':<12} {'Status':<12} {'OK':>5} {'Failed':>7}")
    output("-" * 60)
    for run in runs:
        output(
            f"{run.started_at.strftime('%Y-%m-%d %H:%M:%S'):<20} {run.sync_type:<12} "
            f"{run.status:<12} {run.items_succeeded:>5} {run.items_failed:>7}"
        )
        if _verbose_level > 0:
            for error in run.error_details:
                output(f"    {error.item_type} {error.item_id}: {error.error}")
    return 0


def cmd_structure(args: argparse.Namespace) -> int:
    """Show the assigned audit's structure."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))
    try:
        connection, client = manager.require_client(tenant_id)
    except SyncError as e:
        output_error(f"Error: {e.message}")
        return 1

    if not connection.audit_id:
        client.close()
        output_error("Error: No audit assigned. Run 'corsync validate' first.")
        return 1

    try:
        structure = client.get_audit_structure(connection.audit_id)
    except AuditPlatformError as e:
        output_error(f"Error: {e.message}")
        return 1
    finally:
        client.close()

    if args.json:
        output_json({
            "audit_id": structure.audit_id,
            "name": structure.name,
            "elements": [
                {
                    "number": element.number,
                    "name": element.name,
                    "weight": element.weight,
                    "questions": [vars(q) for q in element.questions],
                }
                for element in structure.elements
            ],
        })
        return 0

    output(f"{structure.name or structure.audit_id}")
    output("=" * 50)
    for element in structure.elements:
        output(f"{element.number:>2}. {element.name} ({element.weight:g}%)")
        for question in element.questions:
            marker = "*" if question.required else " "
            output(f"     {marker} {question.id}: {question.text}")
    return 0


def cmd_audit_status(args: argparse.Namespace) -> int:
    """Refresh and show the audit status."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    manager, _ = build_engine(load_settings(args))
    try:
        status = manager.refresh_audit_status(tenant_id)
    except SyncError as e:
        output_error(f"Error: {e.message}")
        return 1
    except AuditPlatformError as e:
        output_error(f"Error: {e.message}")
        return 1

    output(f"Audit {status.audit_id}: {status.status} ({status.completion_percentage:g}% complete)")
    if status.scheduled_date:
        output(f"  Scheduled: {status.scheduled_date}")
    if status.auditor_name:
        output(f"  Auditor:   {status.auditor_name}")
    return 0


def cmd_push_updates(args: argparse.Namespace) -> int:
    """Push changed records to their existing evidence."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    _, orchestrator = build_engine(load_settings(args))
    try:
        result = orchestrator.push_pending_updates(tenant_id, actor_id=args.actor)
    except SyncError as e:
        output_error(f"Error: {e.message}")
        return 1

    if result.total == 0:
        output("No records waiting for an update.")
        return 0

    output(f"Updated {result.updated} of {result.total} records.")
    for error in result.errors:
        output(f"  {error.item_type} {error.item_id}: {error.error}")
    return 0 if result.failed == 0 else 1


def cmd_mark_changed(args: argparse.Namespace) -> int:
    """Flag a record for an evidence update."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    _, orchestrator = build_engine(load_settings(args))
    if orchestrator.mark_item_changed(tenant_id, args.item_type, args.item_id):
        output(f"Flagged {args.item_type} {args.item_id} for update.")
        return 0
    output_error(f"Error: {args.item_type} {args.item_id} has not been exported.")
    return 1


def cmd_remove_item(args: argparse.Namespace) -> int:
    """Delete a record's evidence."""
    tenant_id = require_tenant(args)
    if tenant_id is None:
        return 1

    _, orchestrator = build_engine(load_settings(args))
    try:
        removed = orchestrator.remove_item(tenant_id, args.item_type, args.item_id)
    except (SyncError, AuditPlatformError) as e:
        output_error(f"Error: {e.message}")
        return 1

    if removed:
        output(f"Removed evidence for {args.item_type} {args.item_id}.")
        return 0
    output_error(f"Error: {args.item_type} {args.item_id} has no exported evidence.")
    return 1


def main() -> NoReturn:
    """Main entry point for Corsync CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except CredentialError as e:
        output_error(f"Credential error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
