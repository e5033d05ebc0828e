from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from agencycrm.policies.migration.cleanup import CleanupController
from agencycrm.policies.migration.engine import PolicyMigrationEngine
from agencycrm.policies.migration.status import MigrationStatusReporter, classify
from agencycrm.policies.schemas import CleanupOptions, MigrationOptions


@pytest.mark.parametrize(
    ("legacy", "templates", "instances", "expected"),
    [
        (0, 0, 0, "EMPTY"),
        (5, 0, 0, "READY"),
        (5, 2, 3, "PARTIAL"),
        (5, 2, 5, "COMPLETED_LEGACY_PRESENT"),
        (0, 2, 5, "COMPLETED"),
    ],
)
def test_classify(legacy: int, templates: int, instances: int, expected: str) -> None:
    assert classify(legacy, templates, instances) == expected


def test_status_follows_migration_lifecycle(db_session: Session, scenario_a: None) -> None:
    reporter = MigrationStatusReporter(db_session)

    ready = reporter.get_status()
    assert ready.state == "READY"
    assert ready.legacy_policies == 3

    PolicyMigrationEngine(db_session).migrate(MigrationOptions(create_backup=False))
    migrated = reporter.get_status()
    assert migrated.state == "COMPLETED_LEGACY_PRESENT"
    assert migrated.policy_templates == 2
    assert migrated.policy_instances == 3

    CleanupController(db_session).cleanup_old_policies(CleanupOptions(create_final_backup=False))
    completed = reporter.get_status()
    assert completed.state == "COMPLETED"
    assert completed.legacy_policies == 0
    assert completed.hint


def test_empty_store(db_session: Session) -> None:
    report = MigrationStatusReporter(db_session).get_status()

    assert report.state == "EMPTY"
    assert report.hint == "No policy data found."
