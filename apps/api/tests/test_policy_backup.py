from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from prometheus_client import REGISTRY
from sqlalchemy import text
from sqlalchemy.orm import Session

from agencycrm import audit
from agencycrm.policies.migration.backup import BackupManager, backup_timestamp


def _fixed_clock(seconds: float) -> Callable[[], float]:
    return lambda: seconds


def _backups_total(status: str) -> float:
    return REGISTRY.get_sample_value("policy_backups_total", {"status": status}) or 0.0


def test_create_backup_snapshots_legacy_rows(db_session: Session, scenario_a: None) -> None:
    created_before = _backups_total("created")
    manager = BackupManager(db_session, clock=_fixed_clock(1_700_000_000.0))

    result = manager.create_backup()

    assert result.success is True
    assert result.backup_id == "policy_backup_1700000000000"
    assert result.row_count == 3
    assert result.error is None
    assert manager.backup_exists(result.backup_id) is True
    assert db_session.execute(text("SELECT COUNT(*) FROM policy_backup_1700000000000")).scalar_one() == 3
    assert _backups_total("created") == created_before + 1
    assert audit.audit_entries[-1]["action"] == "create"
    assert audit.audit_entries[-1]["entity_id"] == result.backup_id


def test_name_collision_fails_without_touching_existing_snapshot(db_session: Session, scenario_a: None) -> None:
    failed_before = _backups_total("failed")
    manager = BackupManager(db_session, clock=_fixed_clock(1_700_000_000.0))
    first = manager.create_backup()

    second = manager.create_backup()

    assert first.success is True
    assert second.success is False
    assert second.backup_id == ""
    assert "already exists" in (second.error or "")
    assert db_session.execute(text("SELECT COUNT(*) FROM policy_backup_1700000000000")).scalar_one() == 3
    assert _backups_total("failed") == failed_before + 1


def test_backup_of_empty_table_succeeds(db_session: Session) -> None:
    result = BackupManager(db_session, clock=_fixed_clock(1_700_000_000.5)).create_backup()

    assert result.success is True
    assert result.backup_id == "policy_backup_1700000000500"
    assert result.row_count == 0


def test_list_backups_newest_first(db_session: Session, scenario_a: None) -> None:
    BackupManager(db_session, clock=_fixed_clock(1_700_000_000.0)).create_backup()
    BackupManager(db_session, clock=_fixed_clock(1_704_067_200.0)).create_backup()

    backups = BackupManager(db_session).list_backups()

    assert [item.backup_id for item in backups] == ["policy_backup_1704067200000", "policy_backup_1700000000000"]
    assert backups[0].created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_prune_backups_drops_expired_snapshots(db_session: Session, scenario_a: None) -> None:
    BackupManager(db_session, clock=_fixed_clock(1_700_000_000.0)).create_backup()
    BackupManager(db_session, clock=_fixed_clock(1_704_067_200.0)).create_backup()
    manager = BackupManager(db_session)

    pruned = manager.prune_backups(30, now=datetime(2024, 1, 2, tzinfo=timezone.utc))

    assert pruned == ["policy_backup_1700000000000"]
    assert manager.backup_exists("policy_backup_1700000000000") is False
    assert manager.backup_exists("policy_backup_1704067200000") is True
    assert audit.audit_entries[-1]["action"] == "prune"


def test_backup_exists_rejects_unsafe_identifiers(db_session: Session) -> None:
    manager = BackupManager(db_session)

    assert manager.backup_exists("policy_backup_1; DROP TABLE policy") is False
    assert manager.backup_exists("policy") is False
    assert manager.backup_exists("") is False


def test_backup_timestamp_parsing() -> None:
    assert backup_timestamp("policy_backup_0") == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert backup_timestamp("policy_backup_abc") is None
    assert backup_timestamp("other_123") is None
