from __future__ import annotations

from pathlib import Path

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest, write_to_textfile


policy_migration_runs_total = Counter(
    "policy_migration_runs_total",
    "Total policy migration runs by mode and status",
    ["mode", "status"],
)

policy_migration_run_duration_seconds = Histogram(
    "policy_migration_run_duration_seconds",
    "Policy migration run duration in seconds",
    ["mode"],
)

policy_migration_records_total = Counter(
    "policy_migration_records_total",
    "Legacy policy records processed by mode and outcome",
    ["mode", "outcome"],
)

policy_migration_templates_created_total = Counter(
    "policy_migration_templates_created_total",
    "Policy templates created by the migration",
    ["mode"],
)

policy_migration_instances_created_total = Counter(
    "policy_migration_instances_created_total",
    "Policy instances created by the migration",
    ["mode"],
)

policy_backups_total = Counter(
    "policy_backups_total",
    "Policy backup attempts by status",
    ["status"],
)

policy_rollbacks_total = Counter(
    "policy_rollbacks_total",
    "Policy rollback attempts by status",
    ["status"],
)

policy_cleanup_deleted_records_total = Counter(
    "policy_cleanup_deleted_records_total",
    "Legacy policy records deleted by cleanup",
)

policy_integrity_check_failures_total = Counter(
    "policy_integrity_check_failures_total",
    "Failed integrity checks by check name",
    ["check"],
)


def observe_migration_run(
    mode: str,
    status: str,
    duration: float,
    *,
    templates_created: int = 0,
    instances_created: int = 0,
) -> None:
    policy_migration_runs_total.labels(mode=mode, status=status).inc()
    policy_migration_run_duration_seconds.labels(mode=mode).observe(duration)
    if templates_created > 0:
        policy_migration_templates_created_total.labels(mode=mode).inc(templates_created)
    if instances_created > 0:
        policy_migration_instances_created_total.labels(mode=mode).inc(instances_created)


def observe_migration_record(mode: str, outcome: str) -> None:
    policy_migration_records_total.labels(mode=mode, outcome=outcome).inc()


def observe_backup(status: str) -> None:
    policy_backups_total.labels(status=status).inc()


def observe_rollback(status: str) -> None:
    policy_rollbacks_total.labels(status=status).inc()


def observe_cleanup_deleted(count: int) -> None:
    if count > 0:
        policy_cleanup_deleted_records_total.inc(count)


def observe_integrity_failure(check: str) -> None:
    policy_integrity_check_failures_total.labels(check=check).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def write_metrics_textfile(path: str | Path) -> None:
    write_to_textfile(str(path), REGISTRY)
