from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agencycrm.policies.migration.engine import PolicyMigrationEngine
from agencycrm.policies.migration.integrity import PolicyIntegrityVerifier, render_markdown
from agencycrm.policies.models import LegacyPolicy, PolicyInstance, PolicyTemplate
from agencycrm.policies.schemas import DataIntegrityReport, IntegrityCheck, IntegrityReport, MigrationOptions

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)

CORE_CHECKS = [
    "Policy to Instance Count Match",
    "No Orphaned Instances",
    "Template Uniqueness",
    "Instance Uniqueness",
    "Data Consistency",
]


def _migrate(session: Session) -> None:
    result = PolicyMigrationEngine(session).migrate(MigrationOptions(create_backup=False))
    assert result.status == "SUCCESS"


def _checks(report: IntegrityReport | DataIntegrityReport) -> dict[str, IntegrityCheck]:
    return {check.name: check for check in report.checks}


def _add_template(session: Session, policy_number: str = "POL-1") -> PolicyTemplate:
    template = PolicyTemplate(id=uuid.uuid4(), policy_number=policy_number, policy_type="Life", provider="X")
    session.add(template)
    session.commit()
    return template


def _add_instance(session: Session, template_id: uuid.UUID, client_id: str, premium: str = "100.00") -> None:
    session.add(
        PolicyInstance(
            id=uuid.uuid4(),
            policy_template_id=template_id,
            client_id=client_id,
            premium_amount=Decimal(premium),
            commission_amount=Decimal("10.00"),
            status="Active",
            start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
            expiry_date=datetime(2029, 1, 1, tzinfo=timezone.utc),
        )
    )
    session.commit()


def test_clean_migration_passes_every_check(db_session: Session, scenario_a: None) -> None:
    _migrate(db_session)

    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)

    assert report.success is True
    assert [check.name for check in report.checks] == CORE_CHECKS
    assert all(check.passed for check in report.checks)
    assert _checks(report)["Policy to Instance Count Match"].details == "Policies: 3, Instances: 3"


def test_count_mismatch_before_migration(db_session: Session, scenario_a: None) -> None:
    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)

    count_check = _checks(report)["Policy to Instance Count Match"]
    assert report.success is False
    assert count_check.passed is False
    assert count_check.details == "Policies: 3, Instances: 0"


def test_duplicate_templates_are_reported(db_session: Session) -> None:
    _add_template(db_session)
    _add_template(db_session)

    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)

    uniqueness = _checks(report)["Template Uniqueness"]
    assert uniqueness.passed is False
    assert uniqueness.details == "Duplicate templates: 1"
    assert [(item.policy_number, item.count) for item in report.duplicate_templates] == [("POL-1", 2)]


def test_duplicate_instances_are_reported(db_session: Session, scenario_a: None) -> None:
    _migrate(db_session)
    template = db_session.scalar(select(PolicyTemplate).where(PolicyTemplate.policy_number == "POL-2"))
    _add_instance(db_session, template.id, "c1")

    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)

    assert _checks(report)["Instance Uniqueness"].passed is False
    assert report.duplicate_instances[0].policy_template_id == template.id
    assert report.duplicate_instances[0].client_id == "c1"
    assert report.duplicate_instances[0].count == 2


def test_orphaned_instances_are_reported(db_session: Session, scenario_a: None) -> None:
    _migrate(db_session)
    template = db_session.scalar(select(PolicyTemplate).where(PolicyTemplate.policy_number == "POL-2"))
    _add_instance(db_session, template.id, "ghost")

    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)

    orphaned = _checks(report)["No Orphaned Instances"]
    assert orphaned.passed is False
    assert orphaned.details == "Orphaned instances: 1"
    assert len(orphaned.sample_ids) == 1


def test_negative_amounts_fail_data_consistency(db_session: Session, scenario_a: None) -> None:
    _migrate(db_session)
    template = _add_template(db_session, "POL-7")
    _add_instance(db_session, template.id, "c2", premium="-1.00")

    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)

    consistency = _checks(report)["Data Consistency"]
    assert consistency.passed is False
    assert consistency.details == "Invalid instances: 1"


def test_future_start_fails_data_consistency(
    db_session: Session,
    scenario_a: None,
    make_policy: Callable[..., LegacyPolicy],
) -> None:
    make_policy("POL-3", "c2", start_date=datetime(2030, 1, 1, tzinfo=timezone.utc))
    _migrate(db_session)

    report = PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)
    checks = _checks(report)

    assert report.success is False
    assert checks["Data Consistency"].passed is False
    assert checks["Data Consistency"].details == "Invalid instances: 1"
    assert len(checks["Data Consistency"].sample_ids) == 1
    assert all(checks[name].passed for name in CORE_CHECKS if name != "Data Consistency")


def test_verification_is_read_only(db_session: Session, scenario_a: None) -> None:
    _migrate(db_session)
    _add_template(db_session)
    counts_before = [
        db_session.scalar(select(func.count()).select_from(model))
        for model in (LegacyPolicy, PolicyTemplate, PolicyInstance)
    ]

    PolicyIntegrityVerifier(db_session).verify_migration_integrity(now=NOW)
    PolicyIntegrityVerifier(db_session).run_all_checks(now=NOW)

    counts_after = [
        db_session.scalar(select(func.count()).select_from(model))
        for model in (LegacyPolicy, PolicyTemplate, PolicyInstance)
    ]
    assert counts_after == counts_before


def test_full_report_passes_after_clean_migration(db_session: Session, scenario_a: None) -> None:
    _migrate(db_session)

    report = PolicyIntegrityVerifier(db_session).run_all_checks(now=NOW)

    assert report.overall_status == "passed"
    assert report.summary.total_checks == 9
    assert report.summary.passed == 9
    assert report.summary.errors == 0
    assert report.summary.warnings == 0
    assert report.generated_at == NOW


def test_full_report_flags_warnings(
    db_session: Session,
    scenario_a: None,
    make_policy: Callable[..., LegacyPolicy],
) -> None:
    make_policy("POL-5", "c2", status="Lapsed")
    make_policy(
        "POL-6",
        "c2",
        start_date=datetime(2020, 1, 1, tzinfo=timezone.utc),
        expiry_date=datetime(2021, 1, 1, tzinfo=timezone.utc),
    )

    report = PolicyIntegrityVerifier(db_session).run_all_checks(now=NOW)
    checks = _checks(report)

    assert report.overall_status == "warnings"
    assert checks["Status Consistency"].passed is False
    assert checks["Status Consistency"].severity == "warning"
    assert checks["Business Rule Compliance"].passed is False
    assert checks["Business Rule Compliance"].details == (
        "0 instances and 1 old policies are expired but still marked as Active"
    )
    assert report.summary.warnings == 2
    assert report.summary.errors == 0


def test_full_report_fails_on_date_ranges(
    db_session: Session,
    scenario_a: None,
    make_policy: Callable[..., LegacyPolicy],
) -> None:
    make_policy(
        "POL-8",
        "c1",
        start_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
        expiry_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        status="Expired",
    )

    report = PolicyIntegrityVerifier(db_session).run_all_checks(now=NOW)

    date_check = _checks(report)["Date Consistency"]
    assert report.overall_status == "failed"
    assert date_check.passed is False
    assert date_check.affected_records == 1
    assert date_check.sample_ids == ["pol-0004"]


def test_unused_templates_are_informational(db_session: Session) -> None:
    _add_template(db_session, "POL-9")

    report = PolicyIntegrityVerifier(db_session).run_all_checks(now=NOW)

    unused = _checks(report)["Templates Without Instances"]
    assert unused.passed is False
    assert unused.severity == "info"
    assert report.overall_status == "passed"


def test_render_markdown(db_session: Session, scenario_a: None, make_policy: Callable[..., LegacyPolicy]) -> None:
    make_policy("POL-5", "c2", status="Lapsed")

    markdown = render_markdown(PolicyIntegrityVerifier(db_session).run_all_checks(now=NOW))

    assert markdown.startswith("# Policy Data Integrity Report")
    assert "**Overall Status:** WARNINGS" in markdown
    assert "### Status Consistency - WARN" in markdown
    assert "### Client References - PASS" in markdown
    assert "- Total Checks: 9" in markdown
