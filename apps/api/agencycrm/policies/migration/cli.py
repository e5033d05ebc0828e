"""Operator entry point for the legacy policy migration.

Typical sequence: ``validate`` -> ``migrate --dry-run`` -> ``migrate`` -> ``verify`` ->
``cleanup``; ``rollback <backup_id>`` undoes a live migration.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
import time
import traceback
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from agencycrm.context import new_run_id, reset_actor, reset_run_id, set_actor, set_run_id
from agencycrm.core.config import Settings, get_phase_config, get_settings
from agencycrm.core.database import session_scope
from agencycrm.logging import configure_logging
from agencycrm.metrics import write_metrics_textfile
from agencycrm.otel import setup_otel
from agencycrm.policies.errors import IntegrityViolation
from agencycrm.policies.migration.backup import BackupManager
from agencycrm.policies.migration.cleanup import CleanupController
from agencycrm.policies.migration.engine import PolicyMigrationEngine
from agencycrm.policies.migration.integrity import PolicyIntegrityVerifier, render_markdown
from agencycrm.policies.migration.rollback import RollbackController
from agencycrm.policies.migration.status import MigrationStatusReporter
from agencycrm.policies.migration.validator import PolicyValidator
from agencycrm.policies.schemas import CleanupOptions, MigrationOptions

logger = logging.getLogger("agencycrm.policies.migration.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agencycrm-migrate",
        description="Migrate legacy policy rows into policy templates and instances.",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON.")
    parser.add_argument("--metrics-file", type=Path, default=None, help="Write Prometheus metrics to this file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Check legacy policy data before migrating.")
    subparsers.add_parser("backup", help="Snapshot the legacy policy table.")

    backups = subparsers.add_parser("backups", help="List policy backups.")
    backups.add_argument("--prune", action="store_true", help="Drop backups older than the retention window.")
    backups.add_argument("--retention-days", type=int, default=None)

    migrate = subparsers.add_parser("migrate", help="Create templates and instances from legacy policies.")
    migrate.add_argument("--dry-run", action="store_true", help="Report what would happen without writing.")
    migrate.add_argument("--batch-size", type=int, default=None)
    migrate.add_argument(
        "--skip-duplicates",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Reuse existing templates/instances instead of reporting conflicts.",
    )
    migrate.add_argument("--no-backup", action="store_true", help="Do not snapshot the legacy table first.")

    subparsers.add_parser("verify", help="Run post-migration integrity checks.")

    report = subparsers.add_parser("report", help="Generate the full data integrity report.")
    report.add_argument("--output", type=Path, default=None, help="Write the markdown report to this file.")

    rollback = subparsers.add_parser("rollback", help="Restore legacy policies from a backup.")
    rollback.add_argument("backup_id")

    cleanup = subparsers.add_parser("cleanup", help="Delete legacy policies after a verified migration.")
    cleanup.add_argument("--no-backup", action="store_true", help="Skip the final backup.")
    cleanup.add_argument("--skip-verify", action="store_true", help="Do not require integrity checks to pass.")

    subparsers.add_parser("status", help="Show where the migration stands.")
    return parser


def _emit(args: argparse.Namespace, result: BaseModel | dict[str, Any], lines: list[str]) -> None:
    if args.json:
        payload = result.model_dump(mode="json") if isinstance(result, BaseModel) else result
        print(json.dumps(payload, indent=2, default=str))
        return
    for line in lines:
        print(line)


def _countdown(seconds: float, warning: str) -> None:
    if seconds <= 0:
        return
    print(warning, file=sys.stderr)
    print(f"   Press Ctrl+C to cancel, or wait {seconds:g} seconds to continue...", file=sys.stderr)
    time.sleep(seconds)


def _bullets(items: list[str]) -> list[str]:
    return [f"   - {item}" for item in items]


def _validate(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    result = PolicyValidator(session).validate()
    lines = [
        "Validation Results:",
        f"   Total Policies: {result.total_policies}",
        f"   Unique Templates: {result.unique_templates}",
        f"   Valid: {'yes' if result.is_valid else 'no'}",
    ]
    if result.errors:
        lines += ["Errors:", *_bullets(result.errors)]
    if result.warnings:
        lines += ["Warnings:", *_bullets(result.warnings)]
    lines.append(
        "Data is ready for migration." if result.is_valid else "Fix the errors above before migrating."
    )
    _emit(args, result, lines)
    return EXIT_OK if result.is_valid else EXIT_FAILED


def _backup(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    result = BackupManager(session).create_backup()
    if result.success:
        lines = [
            "Backup created.",
            f"   Backup ID: {result.backup_id}",
            f"   Rows: {result.row_count}",
            "   Save this ID for potential rollback operations.",
        ]
    else:
        lines = [f"Backup failed: {result.error}"]
    _emit(args, result, lines)
    return EXIT_OK if result.success else EXIT_FAILED


def _backups(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    manager = BackupManager(session)
    pruned: list[str] = []
    if args.prune:
        retention_days = args.retention_days
        if retention_days is None:
            retention_days = get_phase_config(settings).backup_retention_days
        pruned = manager.prune_backups(retention_days)

    backups = manager.list_backups()
    lines = [f"Backups ({len(backups)}):"]
    lines += [f"   {item.backup_id}  {item.created_at.isoformat()}" for item in backups]
    if args.prune:
        lines.append(f"Pruned {len(pruned)} backups.")
    payload = {"backups": [item.model_dump(mode="json") for item in backups], "pruned": pruned}
    _emit(args, payload, lines)
    return EXIT_OK


def _migrate(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    phase = get_phase_config(settings)
    options = MigrationOptions(
        dry_run=args.dry_run,
        batch_size=args.batch_size or phase.batch_size,
        skip_duplicates=phase.skip_duplicates if args.skip_duplicates is None else args.skip_duplicates,
        create_backup=settings.migration_create_backup and not args.no_backup,
    )
    if not options.dry_run:
        _countdown(settings.destructive_delay_seconds, "This will modify the database.")

    result = PolicyMigrationEngine(session).migrate(options)
    lines = [
        "Migration Results:",
        f"   Mode: {'DRY RUN' if result.dry_run else 'LIVE MIGRATION'}",
        f"   Status: {result.status}",
        f"   Backup ID: {result.backup_id or '-'}",
        f"   Templates Created: {result.templates_created}",
        f"   Instances Created: {result.instances_created}",
        f"   Policies Migrated: {result.policies_migrated}",
        f"   Duplicate Templates: {result.duplicate_templates}",
        f"   Duplicate Instances: {result.duplicate_instances}",
        f"   Skipped Policies: {result.skipped_policies}",
        f"   Errors: {len(result.errors)}",
    ]
    if result.errors:
        lines += ["Errors encountered:", *_bullets(result.errors)]
    if result.status == "SUCCESS" and not result.dry_run:
        lines.append('Run "verify" to check data integrity.')
    _emit(args, result, lines)
    return EXIT_OK if result.status == "SUCCESS" else EXIT_FAILED


def _verify(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    result = PolicyIntegrityVerifier(session).verify_migration_integrity()
    lines = ["Integrity Check Results:", f"   Overall: {'PASSED' if result.success else 'FAILED'}"]
    lines += [f"   [{'ok' if check.passed else 'FAIL'}] {check.name}: {check.details}" for check in result.checks]
    _emit(args, result, lines)
    return EXIT_OK if result.success else EXIT_FAILED


def _report(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    result = PolicyIntegrityVerifier(session).run_all_checks()
    markdown = render_markdown(result)
    if args.output is not None:
        args.output.write_text(markdown, encoding="utf-8")
    _emit(args, result, [markdown])
    return EXIT_FAILED if result.overall_status == "failed" else EXIT_OK


def _rollback(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    if not get_phase_config(settings).enable_rollback:
        message = f"Rollback is disabled in the '{settings.migration_phase}' migration phase."
        _emit(args, {"success": False, "backup_id": args.backup_id, "error": message}, [message])
        return EXIT_FAILED

    _countdown(settings.destructive_delay_seconds, "This will delete every policy template and instance.")
    result = RollbackController(session).rollback(args.backup_id)
    if result.success:
        lines = ["Rollback completed.", f"   Restored Policies: {result.restored_count}"]
    else:
        lines = [f"Rollback failed: {result.error}"]
    _emit(args, result, lines)
    return EXIT_OK if result.success else EXIT_FAILED


def _require_integrity(session: Session) -> None:
    report = PolicyIntegrityVerifier(session).verify_migration_integrity()
    if not report.success:
        raise IntegrityViolation([check.name for check in report.checks if not check.passed])


def _cleanup(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    if not args.skip_verify:
        try:
            _require_integrity(session)
        except IntegrityViolation as exc:
            message = f"Refusing to delete legacy policies: {exc}"
            _emit(args, {"success": False, "error": message, "failed_checks": exc.failed_checks}, [message])
            return EXIT_FAILED

    _countdown(settings.cleanup_delay_seconds, "This will permanently delete every legacy policy row.")
    options = CleanupOptions(create_final_backup=settings.migration_create_final_backup and not args.no_backup)
    result = CleanupController(session).cleanup_old_policies(options)
    if result.success:
        lines = [
            "Cleanup completed.",
            f"   Deleted Policies: {result.deleted_count}",
            f"   Final Backup: {result.backup_id or '-'}",
        ]
    else:
        lines = [f"Cleanup failed: {result.error}"]
    _emit(args, result, lines)
    return EXIT_OK if result.success else EXIT_FAILED


def _status(args: argparse.Namespace, session: Session, settings: Settings) -> int:
    result = MigrationStatusReporter(session).get_status()
    lines = [
        f"Migration State: {result.state}",
        f"   Legacy Policies: {result.legacy_policies}",
        f"   Policy Templates: {result.policy_templates}",
        f"   Policy Instances: {result.policy_instances}",
        f"   {result.hint}",
    ]
    _emit(args, result, lines)
    return EXIT_OK


COMMANDS = {
    "validate": _validate,
    "backup": _backup,
    "backups": _backups,
    "migrate": _migrate,
    "verify": _verify,
    "report": _report,
    "rollback": _rollback,
    "cleanup": _cleanup,
    "status": _status,
}


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return "cli"


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "batch_size", None) is not None and args.batch_size <= 0:
        parser.error("--batch-size must be greater than 0")

    configure_logging()
    settings = get_settings()
    setup_otel(settings.app_name, settings.otel_enabled)

    run_token = set_run_id(new_run_id())
    actor_token = set_actor(_current_user())
    try:
        with session_scope() as session:
            return COMMANDS[args.command](args, session, settings)
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as exc:
        logger.exception("migration.command_failed", extra={"phase": args.command, "error": str(exc)})
        print(f"UNEXPECTED ERROR: {exc}", file=sys.stderr)
        print(traceback.format_exc(), file=sys.stderr)
        return EXIT_ERROR
    finally:
        metrics_file = args.metrics_file
        if metrics_file is None and settings.metrics_enabled:
            metrics_file = Path(settings.metrics_textfile)
        if metrics_file is not None:
            write_metrics_textfile(metrics_file)
        reset_actor(actor_token)
        reset_run_id(run_token)


if __name__ == "__main__":
    raise SystemExit(main())
